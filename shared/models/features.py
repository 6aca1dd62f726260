"""
Feature vector encoding used by the statistical anomaly models.
"""

from dataclasses import dataclass, field
from typing import List

import numpy as np


SECONDS_PER_DAY = 86400
DAYS_PER_WEEK = 7

# time of day, day of week, motion, persons, vehicles
BASE_FEATURE_COUNT = 5


@dataclass
class FeatureVector:
    """
    Fixed-width numeric description of an observation.

    The unknown person count is kept for reference only; models see the
    unknown person ratio, which the extractor appends to additional_features.
    """
    time_of_day: int = 0
    day_of_week: int = 0
    motion_level: float = 0.0
    person_count: int = 0
    vehicle_count: int = 0
    unknown_person_count: int = 0
    additional_features: List[float] = field(default_factory=list)

    @property
    def size(self) -> int:
        return BASE_FEATURE_COUNT + len(self.additional_features)

    def to_array(self) -> np.ndarray:
        """Encode as a 1-D float32 row."""
        row = [
            self.time_of_day / SECONDS_PER_DAY,
            self.day_of_week / DAYS_PER_WEEK,
            self.motion_level,
            float(self.person_count),
            float(self.vehicle_count),
        ]
        row.extend(self.additional_features)
        return np.asarray(row, dtype=np.float32)

    @classmethod
    def from_array(cls, row: np.ndarray) -> "FeatureVector":
        """Decode a row produced by to_array."""
        values = np.asarray(row, dtype=np.float64).ravel()
        if values.size < BASE_FEATURE_COUNT:
            raise ValueError(f"Feature row needs at least {BASE_FEATURE_COUNT} values, got {values.size}")

        return cls(
            time_of_day=int(round(values[0] * SECONDS_PER_DAY)),
            day_of_week=int(round(values[1] * DAYS_PER_WEEK)),
            motion_level=float(values[2]),
            person_count=int(round(values[3])),
            vehicle_count=int(round(values[4])),
            additional_features=[float(v) for v in values[BASE_FEATURE_COUNT:]],
        )


def stack_features(features: List[FeatureVector]) -> np.ndarray:
    """Stack feature vectors into an (n_samples, n_features) matrix."""
    if not features:
        return np.empty((0, 0), dtype=np.float32)
    return np.vstack([f.to_array() for f in features])
