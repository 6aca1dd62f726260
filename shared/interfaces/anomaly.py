"""
Statistical anomaly detection interfaces.
"""

from abc import ABC, abstractmethod
from typing import List

import numpy as np

from ..models import FeatureVector, FrameAnalysisResult


class IAnomalyModel(ABC):
    """Interface for a trainable statistical model over feature vectors."""

    @abstractmethod
    def train(self, samples: np.ndarray) -> bool:
        """Train on an (n_samples, n_features) matrix."""
        pass

    @abstractmethod
    def score(self, features: np.ndarray) -> float:
        """Score a single feature row, 0 is normal and values near 1 are anomalous."""
        pass

    @abstractmethod
    def save(self, path: str) -> bool:
        """Persist the model."""
        pass

    @abstractmethod
    def load(self, path: str) -> bool:
        """Load a persisted model."""
        pass

    @abstractmethod
    def is_trained(self) -> bool:
        """Check whether the model has been trained."""
        pass


class IAnomalyDetector(ABC):
    """Interface for a per-camera anomaly detector."""

    @abstractmethod
    def add_to_baseline(self, result: FrameAnalysisResult) -> None:
        """Add an observation to the learning baseline."""
        pass

    @abstractmethod
    def detect_anomaly(self, result: FrameAnalysisResult) -> bool:
        """Score an observation, updating its anomaly fields."""
        pass

    @abstractmethod
    def reset_baseline(self) -> None:
        """Discard accumulated samples and trained models."""
        pass

    @abstractmethod
    def set_threshold(self, threshold: float) -> None:
        """Set and persist the anomaly threshold."""
        pass

    @abstractmethod
    def save_model(self) -> bool:
        """Persist every trained hourly model."""
        pass

    @abstractmethod
    def load_model(self) -> bool:
        """Load persisted hourly models."""
        pass

    @abstractmethod
    def get_recent_features(self, max_items: int = 100) -> List[FeatureVector]:
        """Get the most recently extracted feature vectors."""
        pass
