"""
Camera topology, tracked subject, incident and plan models.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from .observation import DetectedObject


MICROS_PER_SECOND = 1_000_000

# Fraction of the frame treated as the edge band for hand-off prediction
EDGE_MARGIN = 0.1

UNKNOWN_THREAT_INCREMENT = 0.05

# Sightings kept per subject, and per camera in camera_appearances
MAX_POSITION_HISTORY = 100


@dataclass
class CameraPosition:
    """Spatial placement of a camera on the site map."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    map_reference: str = ""


@dataclass
class CameraInfo:
    """Static description of a camera in the site topology."""
    device_id: str
    name: str = ""
    location: str = ""
    is_active: bool = True
    position: CameraPosition = field(default_factory=CameraPosition)
    view_angle: float = 90.0
    view_distance: float = 10.0
    coverage_area: List[Tuple[float, float]] = field(default_factory=list)
    adjacent_cameras: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict) -> "CameraInfo":
        """Build camera info from a topology document entry."""
        position = data.get("position", {}) or {}
        return cls(
            device_id=data.get("deviceId", ""),
            name=data.get("name", ""),
            location=data.get("location", ""),
            is_active=data.get("isActive", True),
            position=CameraPosition(
                x=float(position.get("x", 0.0)),
                y=float(position.get("y", 0.0)),
                z=float(position.get("z", 0.0)),
                map_reference=position.get("mapReference", ""),
            ),
            view_angle=float(data.get("viewAngle", 90.0)),
            view_distance=float(data.get("viewDistance", 10.0)),
            coverage_area=[tuple(p) for p in data.get("coverageArea", [])],
            adjacent_cameras=list(data.get("adjacentCameras", [])),
        )


@dataclass
class PositionRecord:
    """Normalised position of a subject seen by one camera."""
    camera_id: str
    x: float
    y: float
    timestamp_us: int


@dataclass
class TrackedSubject:
    """
    Entity followed across frames and cameras by its tracking id.
    """
    subject_id: str
    type_id: str
    first_seen_us: int = 0
    last_seen_us: int = 0
    positions: List[PositionRecord] = field(default_factory=list)
    camera_appearances: Dict[str, List[int]] = field(default_factory=dict)
    attributes: Dict[str, str] = field(default_factory=dict)
    threat_score: float = 0.0
    is_active: bool = True

    @property
    def last_camera_id(self) -> str:
        return self.positions[-1].camera_id if self.positions else ""

    def update(self, camera_id: str, obj: DetectedObject, timestamp_us: int) -> None:
        """Record a new sighting of this subject."""
        x, y = obj.bounding_box.normalized_center()
        self.positions.append(PositionRecord(camera_id, x, y, timestamp_us))
        if len(self.positions) > MAX_POSITION_HISTORY:
            del self.positions[:-MAX_POSITION_HISTORY]
        appearances = self.camera_appearances.setdefault(camera_id, [])
        appearances.append(timestamp_us)
        if len(appearances) > MAX_POSITION_HISTORY:
            del appearances[:-MAX_POSITION_HISTORY]
        self.attributes.update(obj.attributes)

        if not self.first_seen_us:
            self.first_seen_us = timestamp_us
        self.last_seen_us = timestamp_us
        self.is_active = True

        if obj.is_unknown():
            self.threat_score = min(self.threat_score + UNKNOWN_THREAT_INCREMENT, 1.0)

    def _velocity_pair(self) -> Optional[Tuple[PositionRecord, PositionRecord]]:
        if len(self.positions) < 2:
            return None

        latest = self.positions[-1]
        for record in reversed(self.positions[:-1]):
            if record.camera_id == latest.camera_id:
                return record, latest
        return self.positions[-2], latest

    def predict_next_position(self, seconds_ahead: float = 5.0) -> Tuple[float, float]:
        """Linearly extrapolate the normalised position, clamped to the frame."""
        if not self.positions:
            return (0.5, 0.5)

        pair = self._velocity_pair()
        if pair is None:
            latest = self.positions[-1]
            return (latest.x, latest.y)

        previous, latest = pair
        dt = max((latest.timestamp_us - previous.timestamp_us) / MICROS_PER_SECOND, 0.001)
        vx = (latest.x - previous.x) / dt
        vy = (latest.y - previous.y) / dt

        x = min(max(latest.x + vx * seconds_ahead, 0.0), 1.0)
        y = min(max(latest.y + vy * seconds_ahead, 0.0), 1.0)
        return (x, y)

    def trajectory_angle(self) -> float:
        """Heading in radians, y axis pointing up."""
        pair = self._velocity_pair()
        if pair is None:
            return 0.0
        previous, latest = pair
        return math.atan2(-(latest.y - previous.y), latest.x - previous.x)

    def speed(self) -> float:
        """Speed in normalised frame units per second."""
        pair = self._velocity_pair()
        if pair is None:
            return 0.0
        previous, latest = pair
        dt = max((latest.timestamp_us - previous.timestamp_us) / MICROS_PER_SECOND, 0.001)
        return math.hypot(latest.x - previous.x, latest.y - previous.y) / dt

    def predict_next_cameras(self, cameras: Dict[str, CameraInfo],
                             seconds_ahead: float = 5.0) -> List[str]:
        """
        Predict which adjacent cameras the subject is heading towards.

        Only fires when the predicted position lies in the edge band of the
        current frame; neighbours are chosen by their position relative to the
        current camera in the direction of the edge.
        """
        current = cameras.get(self.last_camera_id)
        if current is None:
            return []

        x, y = self.predict_next_position(seconds_ahead)
        candidates: Set[str] = set()

        for adjacent_id in current.adjacent_cameras:
            adjacent = cameras.get(adjacent_id)
            if adjacent is None:
                continue
            if x < EDGE_MARGIN and adjacent.position.x < current.position.x:
                candidates.add(adjacent_id)
            elif x > 1.0 - EDGE_MARGIN and adjacent.position.x > current.position.x:
                candidates.add(adjacent_id)
            if y < EDGE_MARGIN and adjacent.position.y < current.position.y:
                candidates.add(adjacent_id)
            elif y > 1.0 - EDGE_MARGIN and adjacent.position.y > current.position.y:
                candidates.add(adjacent_id)

        return sorted(candidates)


class IncidentType(str, Enum):
    UNKNOWN_VISITOR = "unknown_visitor"
    LOITERING = "loitering"
    INTRUSION = "intrusion"
    CROWD_FORMATION = "crowd_formation"
    UNUSUAL_MOVEMENT = "unusual_movement"
    SUSPICIOUS_BEHAVIOR = "suspicious_behavior"
    ABANDONED_OBJECT = "abandoned_object"
    TRACKING_LOST = "tracking_lost"
    SYSTEM_ALERT = "system_alert"


class IncidentSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def from_score(cls, score: float) -> "IncidentSeverity":
        """Bucket an anomaly score into a severity."""
        if score > 0.85:
            return cls.CRITICAL
        if score > 0.7:
            return cls.HIGH
        if score > 0.5:
            return cls.MEDIUM
        return cls.LOW


_SEVERITY_RANK = {
    IncidentSeverity.LOW: 0,
    IncidentSeverity.MEDIUM: 1,
    IncidentSeverity.HIGH: 2,
    IncidentSeverity.CRITICAL: 3,
}


class IncidentStatus(str, Enum):
    NEW = "new"
    INVESTIGATING = "investigating"
    CONFIRMED = "confirmed"
    FALSE_ALARM = "false_alarm"
    RESOLVED = "resolved"


_RESOLUTION_MINUTES = {
    IncidentSeverity.LOW: 15,
    IncidentSeverity.MEDIUM: 30,
    IncidentSeverity.HIGH: 60,
    IncidentSeverity.CRITICAL: 120,
}

_RECOMMENDED_ACTIONS = {
    IncidentType.UNKNOWN_VISITOR: [
        "Verify visitor identity",
        "Check access authorization",
        "Monitor visitor movements",
    ],
    IncidentType.LOITERING: [
        "Monitor subject behavior",
        "Verify if subject has legitimate business",
        "Check adjacent cameras",
    ],
    IncidentType.INTRUSION: [
        "Verify intrusion detection",
        "Alert security personnel",
        "Initiate area lockdown",
        "Track intruder movements",
    ],
    IncidentType.CROWD_FORMATION: [
        "Monitor crowd size and behavior",
        "Check for authorized gathering",
        "Alert security if crowd grows",
    ],
    IncidentType.UNUSUAL_MOVEMENT: [
        "Continue tracking subject",
        "Monitor behavior for further anomalies",
        "Check for correlated activities",
    ],
    IncidentType.SUSPICIOUS_BEHAVIOR: [
        "Closely observe behavior",
        "Check for associated objects or activities",
        "Prepare for intervention if behavior escalates",
    ],
    IncidentType.ABANDONED_OBJECT: [
        "Verify object is unattended",
        "Track when and who left the object",
        "Assess potential threat",
    ],
    IncidentType.TRACKING_LOST: [
        "Check adjacent cameras",
        "Review last known direction",
        "Set up alerts for subject reappearance",
    ],
    IncidentType.SYSTEM_ALERT: [
        "Verify alert details",
        "Check system status",
        "Follow system alert protocol",
    ],
}


@dataclass
class IncidentAction:
    """Entry in an incident's append-only response log."""
    action_type: str
    description: str
    initiated_by: str
    timestamp_us: int


@dataclass
class SecurityIncident:
    """Security incident with a status life cycle and response log."""
    incident_id: str
    incident_type: IncidentType
    severity: IncidentSeverity
    description: str
    camera_id: str = ""
    related_camera_ids: List[str] = field(default_factory=list)
    subject_ids: List[str] = field(default_factory=list)
    status: IncidentStatus = IncidentStatus.NEW
    create_time_us: int = 0
    update_time_us: int = 0
    resolve_time_us: int = 0
    response_actions: List[IncidentAction] = field(default_factory=list)
    attributes: Dict[str, str] = field(default_factory=dict)

    def is_active(self) -> bool:
        return self.status not in (IncidentStatus.RESOLVED, IncidentStatus.FALSE_ALARM)

    def add_response_action(self, action_type: str, description: str, timestamp_us: int,
                            initiated_by: str = "system") -> None:
        """Append an entry to the response log."""
        self.response_actions.append(IncidentAction(action_type, description, initiated_by, timestamp_us))
        self.update_time_us = timestamp_us

    def update_status(self, status: IncidentStatus, timestamp_us: int,
                      initiated_by: str = "system") -> None:
        """Move the incident to a new status and log the change."""
        self.status = status
        if status in (IncidentStatus.RESOLVED, IncidentStatus.FALSE_ALARM):
            self.resolve_time_us = timestamp_us
        self.add_response_action(
            "STATUS_CHANGE",
            f"Incident status changed to {status.name}",
            timestamp_us,
            initiated_by,
        )

    def estimate_time_to_resolution(self) -> int:
        """Estimated seconds until resolution based on severity."""
        return _RESOLUTION_MINUTES[self.severity] * 60

    def get_recommended_actions(self) -> List[str]:
        """Recommended operator actions for this incident."""
        actions = list(_RECOMMENDED_ACTIONS.get(self.incident_type, []))
        if self.severity in (IncidentSeverity.HIGH, IncidentSeverity.CRITICAL):
            actions.append("Escalate to supervisor")
            actions.append("Prepare immediate response team")
        return actions


class MonitoringStrategyType(str, Enum):
    PASSIVE = "passive"
    ACTIVE = "active"
    PRIORITY = "priority"
    TRACKING = "tracking"


@dataclass
class MonitoringStrategy:
    """Which cameras to watch and how, optionally for one subject."""
    strategy_type: MonitoringStrategyType
    subject_id: str = ""
    priority_score: float = 0.0
    camera_ids: Set[str] = field(default_factory=set)
    duration_secs: int = 0
    reason: str = ""
    sampling_rate: int = 1
    enable_prediction: bool = False
    alert_on_loss: bool = False
    cross_camera_tracking: bool = False

    def get_cameras_to_watch(self, subject: Optional[TrackedSubject] = None,
                             cameras: Optional[Dict[str, CameraInfo]] = None) -> List[str]:
        """Cameras to watch: explicit list, else predicted, else the last seen camera."""
        if self.camera_ids:
            return sorted(self.camera_ids)
        if subject is None:
            return []
        predicted = subject.predict_next_cameras(cameras or {})
        if predicted:
            return predicted
        return [subject.last_camera_id] if subject.last_camera_id else []


class PlanStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class PlanAction:
    """Prioritised step of a strategic plan."""
    action_id: str
    action_type: str
    description: str
    priority: int = 0
    due_time_us: int = 0
    is_complete: bool = False
    parameters: Dict[str, str] = field(default_factory=dict)


@dataclass
class StrategicPlan:
    """Response plan generated for an incident."""
    plan_id: str
    incident_id: str = ""
    description: str = ""
    status: PlanStatus = PlanStatus.DRAFT
    create_time_us: int = 0
    strategies: List[MonitoringStrategy] = field(default_factory=list)
    actions: List[PlanAction] = field(default_factory=list)

    def add_action(self, action_type: str, description: str, priority: int = 0,
                   due_time_us: int = 0, parameters: Optional[Dict[str, str]] = None) -> PlanAction:
        """Add an action and keep the list sorted by priority, highest first."""
        action = PlanAction(
            action_id=f"ACT-{len(self.actions) + 1}",
            action_type=action_type,
            description=description,
            priority=priority,
            due_time_us=due_time_us,
            parameters=dict(parameters or {}),
        )
        self.actions.append(action)
        self.actions.sort(key=lambda a: a.priority, reverse=True)
        return action

    def complete_action(self, action_id: str) -> bool:
        for action in self.actions:
            if action.action_id == action_id:
                action.is_complete = True
                return True
        return False

    def get_next_action(self) -> Optional[PlanAction]:
        """First incomplete action in priority order."""
        for action in self.actions:
            if not action.is_complete:
                return action
        return None

    def is_complete(self) -> bool:
        if self.status in (PlanStatus.COMPLETED, PlanStatus.CANCELLED):
            return True
        return all(a.is_complete for a in self.actions)
