"""
Observation analysis interfaces.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from ..models import DetectedObject, FrameAnalysisResult


class IObservationAnalyzer(ABC):
    """Interface for turning raw detections into observations."""

    @abstractmethod
    def analyze(self, objects: List[DetectedObject], motion_level: float, timestamp_us: int,
                motion_regions: Optional[List[Tuple[float, float]]] = None) -> FrameAnalysisResult:
        """Analyze one frame worth of detections and motion."""
        pass

    @abstractmethod
    def process_metadata(self, objects: List[DetectedObject], timestamp_us: int) -> FrameAnalysisResult:
        """Analyze object metadata without frame motion."""
        pass
