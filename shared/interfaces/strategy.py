"""
Subject tracking and strategy management interfaces.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from ..models import (
    CameraInfo, DetectedObject, FrameAnalysisResult, IncidentSeverity, IncidentStatus,
    IncidentType, PlanStatus, SecurityIncident, StrategicPlan, TrackedSubject,
)


class IStrategyManager(ABC):
    """Interface for cross-camera tracking, incident and plan management."""

    @abstractmethod
    def register_camera(self, camera: CameraInfo) -> None:
        """Add or replace a camera in the topology."""
        pass

    @abstractmethod
    def update_camera_status(self, camera_id: str, is_active: bool) -> bool:
        """Mark a camera active or inactive."""
        pass

    @abstractmethod
    def process_analysis_result(self, camera_id: str, result: FrameAnalysisResult) -> None:
        """Update subjects, open incidents for anomalies and run cleanup."""
        pass

    @abstractmethod
    def update_tracked_subject(self, camera_id: str, obj: DetectedObject, timestamp_us: int) -> Optional[str]:
        """Match a detection to a subject by tracking id, creating one if needed."""
        pass

    @abstractmethod
    def create_incident(self, incident_type: IncidentType, severity: IncidentSeverity,
                        description: str, camera_id: str,
                        subject_ids: Optional[List[str]] = None) -> str:
        """Open an incident and generate its plan."""
        pass

    @abstractmethod
    def update_incident(self, incident_id: str, status: IncidentStatus,
                        updated_by: str = "system") -> bool:
        """Change an incident's status."""
        pass

    @abstractmethod
    def generate_plan(self, incident_id: str) -> str:
        """Generate a strategic plan for an incident."""
        pass

    @abstractmethod
    def update_plan(self, plan_id: str, status: PlanStatus) -> bool:
        """Change a plan's status."""
        pass

    @abstractmethod
    def get_active_incidents(self) -> List[SecurityIncident]:
        """Incidents that are neither resolved nor false alarms."""
        pass

    @abstractmethod
    def get_active_plans(self) -> List[StrategicPlan]:
        """Plans with ACTIVE status."""
        pass

    @abstractmethod
    def get_tracked_subjects(self) -> List[TrackedSubject]:
        """Tracked subjects, most threatening first."""
        pass

    @abstractmethod
    def get_cameras(self) -> Dict[str, CameraInfo]:
        """Snapshot of the camera topology."""
        pass

    @abstractmethod
    def predict_subject_position(self, subject_id: str, seconds_ahead: float = 5.0) -> Optional[Tuple[float, float]]:
        """Predict a subject's normalised position."""
        pass

    @abstractmethod
    def get_recommended_camera(self) -> str:
        """Camera an operator should look at right now."""
        pass

    @abstractmethod
    def generate_situation_report(self) -> str:
        """Human readable summary of the current situation."""
        pass
