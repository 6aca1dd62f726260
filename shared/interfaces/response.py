"""
Anomaly verification and response interfaces.
"""

from abc import ABC, abstractmethod
from typing import Callable, List

from ..models import FrameAnalysisResult


class IVerificationGate(ABC):
    """Interface for multi-signal anomaly verification and response dispatch."""

    @abstractmethod
    def process_anomaly(self, result: FrameAnalysisResult) -> bool:
        """Track an anomaly; True when it was newly verified and responses fired."""
        pass

    @abstractmethod
    def set_event_callback(self, callback: Callable[[FrameAnalysisResult], None]) -> None:
        """Register the verified-anomaly event callback."""
        pass

    @abstractmethod
    def reset(self) -> None:
        """Forget every anomaly tracker."""
        pass

    @abstractmethod
    def get_tracked_anomaly_types(self) -> List[str]:
        """Anomaly types currently tracked."""
        pass
