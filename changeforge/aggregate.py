"""Accumulation of classified change records.

An :class:`Aggregator` collects records in arrival order and turns them into
area totals and a change matrix. Partial aggregators built by separate
workers merge with :meth:`Aggregator.merge`; area sums are taken with
``math.fsum`` at finalize time so the totals do not depend on how the work
was split up.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Optional, Tuple

from .classify import ChangeRecord, TransitionKey, transition_label, value_key
from .core.types import EqualityPolicy


@dataclass(frozen=True)
class ChangeMatrixEntry:
    """Total area and count of one transition."""

    from_value: Any
    to_value: Any
    area: float
    count: int

    @property
    def transition(self) -> TransitionKey:
        return TransitionKey(self.from_value, self.to_value)

    @property
    def label(self) -> str:
        return transition_label(self.from_value, self.to_value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_value": self.from_value,
            "to_value": self.to_value,
            "area_m2": self.area,
            "count": self.count,
        }


@dataclass
class _TransitionBucket:
    transition: TransitionKey
    areas: List[float] = field(default_factory=list)


@dataclass(frozen=True)
class AggregateTotals:
    """Finalized output of an :class:`Aggregator`."""

    total_area: float
    changed_area: float
    unchanged_area: float
    change_matrix: Tuple[ChangeMatrixEntry, ...]
    records: Tuple[ChangeRecord, ...]

    @property
    def change_percentage(self) -> float:
        """Changed share of the total area, 0 when nothing was measured."""
        if self.total_area > 0:
            return self.changed_area / self.total_area * 100.0
        return 0.0


class Aggregator:
    """Running totals and per-transition buckets for one analysis.

    Args:
        policy: Equality policy used to group transitions, so that values
            the classifier treats as equal land in the same matrix row

    Examples:
        >>> agg = Aggregator()
        >>> agg.add(record_forest_to_urban)
        >>> totals = agg.finalize()
        >>> totals.change_matrix[0].label
        'forest → urban'
    """

    def __init__(self, policy: EqualityPolicy = EqualityPolicy.STRICT):
        self.policy = policy
        self._records: List[ChangeRecord] = []
        self._changed: List[float] = []
        self._unchanged: List[float] = []
        # Insertion order is first-seen order
        self._buckets: Dict[Hashable, _TransitionBucket] = {}

    def __len__(self) -> int:
        return len(self._records)

    def _transition_key(self, transition: TransitionKey) -> Hashable:
        return (
            value_key(transition.from_value, self.policy),
            value_key(transition.to_value, self.policy),
        )

    def add(self, record: Optional[ChangeRecord]) -> None:
        """Add one classified record; None (a discarded sliver) is ignored."""
        if record is None:
            return
        self._records.append(record)

        transition = record.transition
        if transition is None:
            self._unchanged.append(record.area)
            return

        self._changed.append(record.area)
        key = self._transition_key(transition)
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = _TransitionBucket(transition)
            self._buckets[key] = bucket
        bucket.areas.append(record.area)

    def merge(self, other: "Aggregator") -> None:
        """Append everything ``other`` collected, after what is already here.

        Transitions first seen in ``other`` rank after the ones already
        present when areas tie, so merge partials in a fixed order.
        """
        for record in other._records:
            self.add(record)

    def finalize(self) -> AggregateTotals:
        """Compute totals and the change matrix sorted by descending area.

        Ties keep first-seen order (``sorted`` is stable).
        """
        changed_area = math.fsum(self._changed)
        unchanged_area = math.fsum(self._unchanged)

        entries = [
            ChangeMatrixEntry(
                from_value=bucket.transition.from_value,
                to_value=bucket.transition.to_value,
                area=math.fsum(bucket.areas),
                count=len(bucket.areas),
            )
            for bucket in self._buckets.values()
        ]
        entries = sorted(entries, key=lambda e: -e.area)

        return AggregateTotals(
            total_area=changed_area + unchanged_area,
            changed_area=changed_area,
            unchanged_area=unchanged_area,
            change_matrix=tuple(entries),
            records=tuple(self._records),
        )


__all__ = [
    "ChangeMatrixEntry",
    "AggregateTotals",
    "Aggregator",
]
