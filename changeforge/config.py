"""Settings for a change analysis run."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .classify import DEFAULT_SLIVER_THRESHOLD
from .core.errors import ConfigurationError
from .core.types import AreaMethod, EqualityPolicy

DEFAULT_MAX_DISTINCT_VALUES = 100


@dataclass(frozen=True)
class AnalysisConfig:
    """Configuration fixed for the lifetime of one analysis run.

    Attributes:
        sliver_threshold: Overlaps with a smaller area are discarded
        max_distinct_values: Upper bound on distinct attribute values across
            both sets; exceeding it fails the run before any overlay work
        area_method: How areas are measured
        equality: How before and after values are compared
        grid_size: Optional fixed-precision grid for the overlay
        repair_invalid: Repair invalid input polygons instead of rejecting
            every pair that involves them
        max_workers: Worker threads for the overlay (1 runs in-process)
        chunk_size: Before polygons per work unit (default: derived from
            ``max_workers``)

    Examples:
        >>> config = AnalysisConfig(area_method="planar", max_workers=4)
        >>> config.area_method
        <AreaMethod.PLANAR: 'planar'>
    """

    sliver_threshold: float = DEFAULT_SLIVER_THRESHOLD
    max_distinct_values: int = DEFAULT_MAX_DISTINCT_VALUES
    area_method: AreaMethod = AreaMethod.GEODESIC
    equality: EqualityPolicy = EqualityPolicy.STRICT
    grid_size: Optional[float] = None
    repair_invalid: bool = True
    max_workers: int = 1
    chunk_size: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "area_method", _coerce_enum(AreaMethod, self.area_method, "area_method"))
        object.__setattr__(self, "equality", _coerce_enum(EqualityPolicy, self.equality, "equality"))

        if self.sliver_threshold is None or self.sliver_threshold < 0:
            raise ConfigurationError(f"sliver_threshold must be >= 0, got {self.sliver_threshold}")
        if self.max_distinct_values is None or self.max_distinct_values < 1:
            raise ConfigurationError(f"max_distinct_values must be >= 1, got {self.max_distinct_values}")
        if self.grid_size is not None and self.grid_size < 0:
            raise ConfigurationError(f"grid_size must be >= 0, got {self.grid_size}")
        if self.max_workers is None or self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.chunk_size is not None and self.chunk_size < 1:
            raise ConfigurationError(f"chunk_size must be >= 1, got {self.chunk_size}")


def _coerce_enum(enum_cls, value, name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(repr(m.value) for m in enum_cls)
        raise ConfigurationError(f"Invalid {name}: {value!r} (expected one of {choices})") from None


__all__ = [
    "DEFAULT_MAX_DISTINCT_VALUES",
    "AnalysisConfig",
]
