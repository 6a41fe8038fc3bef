"""Exception hierarchy for changeforge.

All library errors derive from :class:`ChangeforgeError` so callers can catch
everything the engine raises with a single ``except`` clause.
"""

from typing import Any, Dict, Optional

from .types import InputErrorReason


class ChangeforgeError(Exception):
    """Base class for all changeforge errors."""
    pass


class InputError(ChangeforgeError):
    """Raised when input is structurally unusable and the run must abort.

    Attributes:
        reason: Machine-readable :class:`InputErrorReason`
        details: Extra context (set label, attribute name, counts)
    """

    def __init__(
        self,
        message: str,
        reason: InputErrorReason,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.reason = reason
        self.details = dict(details or {})


class GeometryError(ChangeforgeError):
    """Raised when the overlay of a single polygon pair fails.

    The orchestrator catches this per pair and counts it; it never aborts a
    run.
    """

    def __init__(
        self,
        message: str,
        before_index: Optional[int] = None,
        after_index: Optional[int] = None,
    ):
        super().__init__(message)
        self.before_index = before_index
        self.after_index = after_index


class ConfigurationError(ChangeforgeError, ValueError):
    """Raised when analysis configuration values are invalid."""
    pass


__all__ = [
    'ChangeforgeError',
    'InputError',
    'GeometryError',
    'ConfigurationError',
]
