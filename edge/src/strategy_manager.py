"""
Cross-camera subject tracking, incident lifecycle and strategic planning.

Implements subject tracking by tracking id, trajectory based hand-off
prediction, incident creation from verified anomalies and response plan
generation with an optional reasoning oracle.
"""

import copy
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger

from shared.interfaces.reasoning import IReasoningOracle
from shared.interfaces.strategy import IStrategyManager
from shared.models import (
    CameraInfo, ContextItem, ContextItemType, DetectedObject, FrameAnalysisResult,
    IncidentSeverity, IncidentStatus, IncidentType, MonitoringStrategy, MonitoringStrategyType,
    OracleActionType, PlanStatus, RequestPriority, RequestType, SecurityIncident, StrategicPlan,
    TrackedSubject,
)
from shared.time_utils import MICROS_PER_HOUR, MICROS_PER_MINUTE, format_timestamp, generate_id, now_us


TRACKED_TYPES = ("person", "vehicle")

SUBJECT_IDLE_US = 10 * MICROS_PER_MINUTE
INCIDENT_TIMEOUT_US = 30 * MICROS_PER_MINUTE
PLAN_RETENTION_US = 24 * MICROS_PER_HOUR
ACTION_SPACING_US = 5 * MICROS_PER_MINUTE

INCIDENT_TYPE_BY_ANOMALY = {
    "UnknownVisitor": IncidentType.UNKNOWN_VISITOR,
    "Loitering": IncidentType.LOITERING,
    "Intrusion": IncidentType.INTRUSION,
    "CrowdFormation": IncidentType.CROWD_FORMATION,
    "AbnormalMovement": IncidentType.UNUSUAL_MOVEMENT,
    "AbandonedObject": IncidentType.ABANDONED_OBJECT,
}

SEVERITY_THREAT_BOOST = {
    IncidentSeverity.CRITICAL: 0.3,
    IncidentSeverity.HIGH: 0.2,
    IncidentSeverity.MEDIUM: 0.1,
    IncidentSeverity.LOW: 0.05,
}


class StrategyManager(IStrategyManager):
    """
    Owns cameras, tracked subjects, incidents and plans.

    Each store has its own lock and no two store locks are held at once;
    readers get copies, so a reader of one store may see a slightly stale
    view of another but never a partially updated object.
    """

    def __init__(self, system_id: str = "default", oracle: Optional[IReasoningOracle] = None,
                 clock: Callable[[], int] = now_us):
        """
        Initialize strategy manager.

        Args:
            system_id: Identifier of the monitored site
            oracle: Optional reasoning oracle for plans and reports
            clock: Microsecond clock, injectable for tests
        """
        self.system_id = system_id
        self.oracle = oracle
        self.clock = clock

        self.cameras: Dict[str, CameraInfo] = {}
        self.subjects: Dict[str, TrackedSubject] = {}
        self.incidents: Dict[str, SecurityIncident] = {}
        self.plans: Dict[str, StrategicPlan] = {}

        self._camera_lock = threading.Lock()
        self._subject_lock = threading.Lock()
        self._incident_lock = threading.Lock()
        self._plan_lock = threading.Lock()

    def configure(self, config: Dict[str, Any]) -> None:
        """Load the system id and camera topology from a settings document."""
        self.system_id = config.get("systemId", self.system_id)
        for entry in config.get("cameras", []) or []:
            if not entry.get("deviceId"):
                logger.warning("Skipping camera entry without deviceId")
                continue
            camera = CameraInfo.from_dict(entry)
            if not camera.name:
                camera.name = camera.device_id
            self.register_camera(camera)
        logger.info(f"Strategy manager {self.system_id} configured with {len(self.cameras)} cameras")

    def register_camera(self, camera: CameraInfo) -> None:
        with self._camera_lock:
            self.cameras[camera.device_id] = camera

    def update_camera_status(self, camera_id: str, is_active: bool) -> bool:
        with self._camera_lock:
            camera = self.cameras.get(camera_id)
            if camera is None:
                return False
            camera.is_active = is_active
            return True

    def get_cameras(self) -> Dict[str, CameraInfo]:
        with self._camera_lock:
            return copy.deepcopy(self.cameras)

    def get_adjacent_cameras(self, camera_id: str) -> List[str]:
        with self._camera_lock:
            camera = self.cameras.get(camera_id)
            return list(camera.adjacent_cameras) if camera else []

    # Subjects

    def process_analysis_result(self, camera_id: str, result: FrameAnalysisResult) -> None:
        subject_ids = []
        for obj in result.objects:
            subject_id = self.update_tracked_subject(camera_id, obj, result.timestamp_us)
            if subject_id:
                subject_ids.append(subject_id)

        if result.is_anomaly:
            incident_type = INCIDENT_TYPE_BY_ANOMALY.get(result.anomaly_type, IncidentType.SUSPICIOUS_BEHAVIOR)
            severity = IncidentSeverity.from_score(result.anomaly_score)
            self.create_incident(incident_type, severity, result.anomaly_description, camera_id, subject_ids)

        self.cleanup_old_data()

    def update_tracked_subject(self, camera_id: str, obj: DetectedObject, timestamp_us: int) -> Optional[str]:
        """Update or create the subject for a detection; only persons and vehicles are tracked."""
        if obj.type_id not in TRACKED_TYPES:
            return None

        with self._subject_lock:
            subject = self.subjects.get(obj.track_id) if obj.track_id else None
            if subject is None:
                subject_id = obj.track_id or generate_id("SUBJ", timestamp_us)
                subject = TrackedSubject(subject_id=subject_id, type_id=obj.type_id)
                self.subjects[subject_id] = subject
                logger.debug(f"New tracked subject {subject_id} ({obj.type_id}) on {camera_id}")
            subject.update(camera_id, obj, timestamp_us)
            return subject.subject_id

    def get_tracked_subjects(self) -> List[TrackedSubject]:
        with self._subject_lock:
            subjects = [copy.deepcopy(s) for s in self.subjects.values()]
        return sorted(subjects, key=lambda s: s.threat_score, reverse=True)

    def get_tracked_subject(self, subject_id: str) -> Optional[TrackedSubject]:
        with self._subject_lock:
            subject = self.subjects.get(subject_id)
            return copy.deepcopy(subject) if subject else None

    def predict_subject_position(self, subject_id: str, seconds_ahead: float = 5.0) -> Optional[Tuple[float, float]]:
        with self._subject_lock:
            subject = self.subjects.get(subject_id)
            if subject is None or not subject.positions:
                return None
            return subject.predict_next_position(seconds_ahead)

    def predict_next_cameras(self, subject_id: str, seconds_ahead: float = 5.0) -> List[str]:
        cameras = self.get_cameras()
        subject = self.get_tracked_subject(subject_id)
        if subject is None:
            return []
        return subject.predict_next_cameras(cameras, seconds_ahead)

    def calculate_threat_score(self, subject: TrackedSubject) -> float:
        """Subject threat boosted by every active incident it is linked to."""
        score = subject.threat_score
        with self._incident_lock:
            for incident in self.incidents.values():
                if incident.is_active() and subject.subject_id in incident.subject_ids:
                    score += SEVERITY_THREAT_BOOST[incident.severity]
        return min(max(score, 0.0), 1.0)

    # Incidents

    def create_incident(self, incident_type: IncidentType, severity: IncidentSeverity,
                        description: str, camera_id: str,
                        subject_ids: Optional[List[str]] = None) -> str:
        now = self.clock()
        incident = SecurityIncident(
            incident_id=generate_id("INC", now),
            incident_type=incident_type,
            severity=severity,
            description=description,
            camera_id=camera_id,
            related_camera_ids=self.get_adjacent_cameras(camera_id),
            subject_ids=list(subject_ids or []),
            create_time_us=now,
            update_time_us=now,
        )
        incident.add_response_action("INCIDENT_CREATED", "Incident created automatically by system", now)

        with self._incident_lock:
            self.incidents[incident.incident_id] = incident

        logger.info(f"Created incident {incident.incident_id} ({incident_type.value}, {severity.value}) on {camera_id}")
        self.generate_plan(incident.incident_id)
        return incident.incident_id

    def update_incident(self, incident_id: str, status: IncidentStatus, updated_by: str = "system") -> bool:
        now = self.clock()
        with self._incident_lock:
            incident = self.incidents.get(incident_id)
            if incident is None:
                logger.warning(f"Incident {incident_id} not found for update")
                return False
            incident.update_status(status, now, updated_by)

        if status in (IncidentStatus.RESOLVED, IncidentStatus.FALSE_ALARM):
            self._complete_plans_for(incident_id)

        logger.info(f"Incident {incident_id} moved to {status.value} by {updated_by}")
        return True

    def add_incident_action(self, incident_id: str, action_type: str, description: str,
                            initiated_by: str = "system") -> bool:
        with self._incident_lock:
            incident = self.incidents.get(incident_id)
            if incident is None:
                return False
            incident.add_response_action(action_type, description, self.clock(), initiated_by)
            return True

    def get_incident(self, incident_id: str) -> Optional[SecurityIncident]:
        with self._incident_lock:
            incident = self.incidents.get(incident_id)
            return copy.deepcopy(incident) if incident else None

    def get_active_incidents(self) -> List[SecurityIncident]:
        with self._incident_lock:
            active = [copy.deepcopy(i) for i in self.incidents.values() if i.is_active()]
        return sorted(active, key=lambda i: (i.severity.rank, i.create_time_us), reverse=True)

    # Plans

    def generate_plan(self, incident_id: str) -> str:
        incident = self.get_incident(incident_id)
        if incident is None:
            logger.warning(f"Cannot generate plan, incident {incident_id} not found")
            return ""

        now = self.clock()
        plan = StrategicPlan(
            plan_id=generate_id("PLAN", now),
            incident_id=incident_id,
            description=f"Response plan for {incident.description}",
            status=PlanStatus.ACTIVE,
            create_time_us=now,
        )
        plan.strategies.append(MonitoringStrategy(
            strategy_type=MonitoringStrategyType.ACTIVE,
            priority_score=0.7,
            camera_ids={incident.camera_id, *self.get_adjacent_cameras(incident.camera_id)},
            duration_secs=30 * 60,
            reason="Incident response",
            sampling_rate=5,
            enable_prediction=True,
            alert_on_loss=True,
            cross_camera_tracking=True,
        ))

        if not self._add_oracle_actions(plan, incident, now):
            for index, description in enumerate(incident.get_recommended_actions()):
                plan.add_action("RECOMMENDED", description, priority=10 - index,
                                due_time_us=now + index * ACTION_SPACING_US)

        with self._plan_lock:
            self.plans[plan.plan_id] = plan

        logger.info(f"Generated plan {plan.plan_id} with {len(plan.actions)} actions for {incident_id}")
        return plan.plan_id

    def _add_oracle_actions(self, plan: StrategicPlan, incident: SecurityIncident, now: int) -> bool:
        if self.oracle is None:
            return False

        context = [self._incident_context(incident)]
        for subject_id in incident.subject_ids:
            subject = self.get_tracked_subject(subject_id)
            if subject is not None:
                context.append(self._subject_context(subject))

        response = self.oracle.request(incident.camera_id, RequestType.RESPONSE_PLANNING, context,
                                       priority=RequestPriority.HIGH)
        if not response.success or not response.actions:
            logger.warning(f"Oracle plan unavailable for {incident.incident_id}: {response.error_message}")
            return False

        for index, action in enumerate(response.actions):
            if action.action_type == OracleActionType.MONITOR:
                continue
            plan.add_action(action.action_type.value, action.description, priority=10 - index,
                            due_time_us=now + index * ACTION_SPACING_US,
                            parameters={k: str(v) for k, v in action.parameters.items()})
        return True

    def update_plan(self, plan_id: str, status: PlanStatus) -> bool:
        with self._plan_lock:
            plan = self.plans.get(plan_id)
            if plan is None:
                return False
            plan.status = status
        logger.info(f"Plan {plan_id} is now {status.value}")
        return True

    def get_plan(self, plan_id: str) -> Optional[StrategicPlan]:
        with self._plan_lock:
            plan = self.plans.get(plan_id)
            return copy.deepcopy(plan) if plan else None

    def get_active_plans(self) -> List[StrategicPlan]:
        with self._plan_lock:
            return [copy.deepcopy(p) for p in self.plans.values() if p.status == PlanStatus.ACTIVE]

    def _complete_plans_for(self, incident_id: str) -> None:
        with self._plan_lock:
            plan_ids = [pid for pid, plan in self.plans.items() if plan.incident_id == incident_id]
        for plan_id in plan_ids:
            self.update_plan(plan_id, PlanStatus.COMPLETED)

    # Situation awareness

    def get_recommended_camera(self) -> str:
        incidents = self.get_active_incidents()
        if incidents:
            return incidents[0].camera_id

        subjects = self.get_tracked_subjects()
        if subjects and subjects[0].last_camera_id:
            return subjects[0].last_camera_id

        with self._camera_lock:
            for camera_id, camera in self.cameras.items():
                if camera.is_active:
                    return camera_id
        return ""

    def generate_situation_report(self) -> str:
        incidents = self.get_active_incidents()
        subjects = [s for s in self.get_tracked_subjects() if s.is_active]
        cameras = self.get_cameras()

        if self.oracle is not None:
            now = self.clock()
            context = [self._incident_context(i) for i in incidents]
            context.extend(self._subject_context(s) for s in subjects)
            context.extend(
                ContextItem(
                    item_type=ContextItemType.ENVIRONMENT_INFO,
                    description=f"Camera: {camera_id} - {camera.name}",
                    timestamp_us=now,
                    metadata={"cameraId": camera_id, "name": camera.name,
                              "location": camera.location, "isActive": camera.is_active},
                )
                for camera_id, camera in cameras.items()
            )
            response = self.oracle.request("SYSTEM", RequestType.SITUATION_ASSESSMENT, context)
            if response.success:
                return response.reasoning
            logger.warning(f"Oracle situation report failed: {response.error_message}")

        return self._build_text_report(incidents, subjects, cameras)

    def _build_text_report(self, incidents: List[SecurityIncident], subjects: List[TrackedSubject],
                           cameras: Dict[str, CameraInfo]) -> str:
        lines = [
            f"Situation report for {self.system_id} at {format_timestamp(self.clock())}",
            f"Active incidents: {len(incidents)}",
        ]
        for incident in incidents:
            lines.append(
                f"- {incident.incident_id} [{incident.severity.name}] {incident.incident_type.name} "
                f"on {incident.camera_id}: {incident.description} ({incident.status.name})"
            )

        lines.append(f"Tracked subjects: {len(subjects)}")
        for subject in subjects:
            lines.append(
                f"- {subject.subject_id} ({subject.type_id}) threat {self.calculate_threat_score(subject):.2f} "
                f"last seen on {subject.last_camera_id or 'unknown'}"
            )

        active_cameras = sum(1 for camera in cameras.values() if camera.is_active)
        lines.append(f"Cameras: {active_cameras}/{len(cameras)} active")
        return "\n".join(lines)

    @staticmethod
    def _incident_context(incident: SecurityIncident) -> ContextItem:
        return ContextItem(
            item_type=ContextItemType.ANOMALY_DETECTION,
            description=f"Incident: {incident.incident_id} - {incident.description}",
            timestamp_us=incident.create_time_us,
            metadata={
                "incidentId": incident.incident_id,
                "type": incident.incident_type.value,
                "severity": incident.severity.value,
                "status": incident.status.value,
                "cameraId": incident.camera_id,
            },
        )

    @staticmethod
    def _subject_context(subject: TrackedSubject) -> ContextItem:
        return ContextItem(
            item_type=ContextItemType.OBJECT_DETECTION,
            description=f"Subject: {subject.subject_id} - {subject.type_id}",
            timestamp_us=subject.last_seen_us,
            metadata={
                "subjectId": subject.subject_id,
                "type": subject.type_id,
                "threatScore": subject.threat_score,
                "currentCamera": subject.last_camera_id,
            },
        )

    # Housekeeping

    def cleanup_old_data(self) -> None:
        """Drop idle subjects, time out stale incidents and prune old finished plans."""
        now = self.clock()

        with self._subject_lock:
            idle = [sid for sid, s in self.subjects.items() if now - s.last_seen_us > SUBJECT_IDLE_US]
            for subject_id in idle:
                del self.subjects[subject_id]
        if idle:
            logger.debug(f"Removed {len(idle)} idle subjects")

        timed_out = []
        with self._incident_lock:
            for incident in self.incidents.values():
                if incident.is_active() and now - incident.update_time_us > INCIDENT_TIMEOUT_US:
                    incident.update_status(IncidentStatus.RESOLVED, now, "system_timeout")
                    timed_out.append(incident.incident_id)
        for incident_id in timed_out:
            logger.info(f"Incident {incident_id} resolved after inactivity")
            self._complete_plans_for(incident_id)

        with self._plan_lock:
            expired = [pid for pid, p in self.plans.items()
                       if now - p.create_time_us > PLAN_RETENTION_US and p.status != PlanStatus.ACTIVE]
            for plan_id in expired:
                del self.plans[plan_id]
