"""
Orthostatic test.

Heart rate is measured lying / sitting at rest, then again after standing
up.  The rise between the two readings indicates how well the
cardiovascular system adapts to the posture change.  This module maps that
rise to a recommendation and keeps a history of completed tests.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from pathlib import Path
from typing import List, NamedTuple
from uuid import uuid4

logger = logging.getLogger(__name__)


class Status(enum.Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ATTENTION = "attention"
    WARNING = "warning"


class Recommendation(NamedTuple):
    text: str
    status: Status


# (upper bound of the rise in BPM, exclusive) -> recommendation
_THRESHOLDS = (
    (12, Recommendation(
        "Excellent cardiovascular adaptation. High level of physical fitness.",
        Status.EXCELLENT)),
    (18, Recommendation(
        "Good cardiovascular adaptation. Keep up regular training.",
        Status.GOOD)),
    (25, Recommendation(
        "Moderate adaptation. More aerobic physical activity is recommended.",
        Status.ATTENTION)),
)
_FALLBACK = Recommendation(
    "Poor adaptation. Consult a cardiologist and increase activity gradually.",
    Status.WARNING,
)


def recommend(difference: int) -> Recommendation:
    """Map the standing-minus-resting heart-rate rise to a recommendation."""
    for bound, rec in _THRESHOLDS:
        if difference < bound:
            return rec
    return _FALLBACK


@dataclass
class Measurement:
    """One completed orthostatic test."""

    date: str
    resting_hr: int
    standing_hr: int
    difference: int
    recommendation: str
    status: Status
    id: str = field(default_factory=lambda: uuid4().hex)

    @classmethod
    def from_rates(cls, resting_hr: int, standing_hr: int, on: date | None = None) -> "Measurement":
        difference = standing_hr - resting_hr
        rec = recommend(difference)
        return cls(
            date=(on or date.today()).isoformat(),
            resting_hr=resting_hr,
            standing_hr=standing_hr,
            difference=difference,
            recommendation=rec.text,
            status=rec.status,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Measurement":
        data = dict(data)
        data["status"] = Status(data["status"])
        return cls(**data)


class MeasurementHistory:
    """Completed tests, newest first."""

    def __init__(self, measurements: List[Measurement] | None = None) -> None:
        self.measurements: List[Measurement] = list(measurements or [])

    def add(self, measurement: Measurement) -> None:
        self.measurements.insert(0, measurement)

    def average_difference(self) -> int:
        """Mean heart-rate rise across all tests, rounded; 0 when empty."""
        if not self.measurements:
            return 0
        total = sum(m.difference for m in self.measurements)
        return round(total / len(self.measurements))

    def __len__(self) -> int:
        return len(self.measurements)

    def __iter__(self):
        return iter(self.measurements)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Path) -> None:
        path = Path(path)
        path.write_text(json.dumps([m.to_dict() for m in self.measurements], indent=2))
        logger.info("Saved %d measurements to %s", len(self), path)

    @classmethod
    def load(cls, path: Path) -> "MeasurementHistory":
        """Load *path*; a missing file gives an empty history."""
        path = Path(path)
        if not path.exists():
            return cls()
        records = json.loads(path.read_text())
        return cls([Measurement.from_dict(r) for r in records])
