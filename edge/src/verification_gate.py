"""
Anomaly verification and response dispatch.

Anomalies are tracked per type. An anomaly is verified from its score, its
number of consecutive detections or its persistence, and the first
verification of an occurrence fires the registered response actions, each
rate limited by its own cooldown.
"""

import shlex
import subprocess
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

import requests
from loguru import logger

from shared.interfaces.response import IVerificationGate
from shared.models import FrameAnalysisResult, GlobalConfig
from shared.time_utils import MICROS_PER_SECOND, now_us


GENERIC_ANOMALY_TYPE = "GeneralAnomaly"
DEFAULT_ANOMALY_TYPES = ("UnknownVisitor", "AbnormalActivity", GENERIC_ANOMALY_TYPE)

TRACKER_EXPIRY_US = 120 * MICROS_PER_SECOND
PERSISTENCE_US = 30 * MICROS_PER_SECOND
HTTP_TIMEOUT_SECS = 10
COMMAND_TIMEOUT_SECS = 60


class ResponseActionType(str, Enum):
    LOG_ONLY = "log_only"
    NX_EVENT = "nx_event"
    HTTP_REQUEST = "http_request"
    SIP_CALL = "sip_call"
    EXECUTE_COMMAND = "execute_command"


@dataclass
class ResponseAction:
    """Side effect fired when an anomaly is verified."""
    action_type: ResponseActionType
    name: str
    description: str = ""
    target: str = ""
    payload: str = ""
    priority: int = 0
    cooldown_ms: int = 60000
    last_triggered_us: int = 0

    def in_cooldown(self, now: int) -> bool:
        if not self.last_triggered_us:
            return False
        return (now - self.last_triggered_us) < self.cooldown_ms * 1000


@dataclass
class AnomalyTracker:
    """Rolling state for one anomaly type."""
    anomaly_type: str
    max_score: float
    first_detected_us: int
    last_detected_us: int
    consecutive_detections: int = 1
    verified: bool = False
    responded: bool = False


class VerificationGate(IVerificationGate):
    """
    Per-camera verification gate.

    Trackers and response actions are guarded by separate locks; responses
    run outside the tracker lock so callbacks may call back into the gate.
    """

    def __init__(self, device_id: str, global_config: Optional[GlobalConfig] = None,
                 clock: Callable[[], int] = now_us):
        """
        Initialize verification gate.

        Args:
            device_id: Camera identifier included in outbound notifications
            global_config: Global settings, used for SIP integration
            clock: Microsecond clock, injectable for tests
        """
        self.device_id = device_id
        self.global_config = global_config or GlobalConfig()
        self.clock = clock

        self.trackers: Dict[str, AnomalyTracker] = {}
        self.response_actions: Dict[str, List[ResponseAction]] = {}
        self.event_callback: Optional[Callable[[FrameAnalysisResult], None]] = None

        self._tracker_lock = threading.Lock()
        self._action_lock = threading.Lock()

        self._register_default_actions()

    def _register_default_actions(self) -> None:
        for anomaly_type in DEFAULT_ANOMALY_TYPES:
            self.add_response_action(anomaly_type, ResponseAction(
                action_type=ResponseActionType.LOG_ONLY,
                name="LogAnomaly",
                description="Log anomaly detection to system log",
                priority=0,
            ))
            self.add_response_action(anomaly_type, ResponseAction(
                action_type=ResponseActionType.NX_EVENT,
                name="NxEvent",
                description="Generate event for the anomaly",
                priority=10,
            ))

        if self.global_config.enable_sip_integration:
            self.add_response_action("UnknownVisitor", ResponseAction(
                action_type=ResponseActionType.SIP_CALL,
                name="SipNotification",
                description="Make SIP call to security personnel",
                target=self.global_config.alarm_phone_number,
                priority=20,
                cooldown_ms=300000,
            ))

    def set_event_callback(self, callback: Callable[[FrameAnalysisResult], None]) -> None:
        self.event_callback = callback

    def add_response_action(self, anomaly_type: str, action: ResponseAction) -> None:
        """Add an action, replacing any action with the same name."""
        with self._action_lock:
            actions = self.response_actions.setdefault(anomaly_type, [])
            for index, existing in enumerate(actions):
                if existing.name == action.name:
                    actions[index] = action
                    break
            else:
                actions.append(action)
            actions.sort(key=lambda a: a.priority, reverse=True)

    def remove_response_action(self, anomaly_type: str, name: str) -> bool:
        with self._action_lock:
            actions = self.response_actions.get(anomaly_type, [])
            remaining = [a for a in actions if a.name != name]
            self.response_actions[anomaly_type] = remaining
            return len(remaining) != len(actions)

    def get_response_actions(self, anomaly_type: str) -> List[ResponseAction]:
        with self._action_lock:
            return list(self.response_actions.get(anomaly_type, []))

    def process_anomaly(self, result: FrameAnalysisResult) -> bool:
        if not result.is_anomaly:
            return False

        now = self.clock()
        self.cleanup(now)

        with self._tracker_lock:
            tracker = self.trackers.get(result.anomaly_type)
            if tracker is None:
                tracker = AnomalyTracker(
                    anomaly_type=result.anomaly_type,
                    max_score=result.anomaly_score,
                    first_detected_us=now,
                    last_detected_us=now,
                )
                self.trackers[result.anomaly_type] = tracker
            else:
                tracker.consecutive_detections += 1
                tracker.last_detected_us = now
                tracker.max_score = max(tracker.max_score, result.anomaly_score)

            if not self.verify(result, tracker) or tracker.responded:
                return False
            tracker.responded = True

        logger.info(f"Anomaly {result.anomaly_type} verified on {self.device_id} (score {result.anomaly_score:.2f})")
        self.trigger_responses(result, now)
        return True

    @staticmethod
    def verify(result: FrameAnalysisResult, tracker: AnomalyTracker) -> bool:
        """Apply the verification rules; a verified tracker stays verified."""
        if tracker.verified:
            return True

        if result.anomaly_score > 0.85:
            tracker.verified = True
        elif result.anomaly_score > 0.7 and tracker.consecutive_detections >= 2:
            tracker.verified = True
        elif tracker.consecutive_detections >= 3:
            tracker.verified = True
        elif tracker.last_detected_us - tracker.first_detected_us > PERSISTENCE_US:
            tracker.verified = True
        return tracker.verified

    def trigger_responses(self, result: FrameAnalysisResult, now: int) -> int:
        """Fire every action for the type not in cooldown; returns the number fired."""
        with self._action_lock:
            actions = self.response_actions.get(result.anomaly_type)
            if not actions:
                actions = self.response_actions.get(GENERIC_ANOMALY_TYPE, [])
            actions = list(actions)

        if not actions:
            logger.warning(f"No response actions defined for anomaly type: {result.anomaly_type}")
            return 0

        fired = 0
        for action in actions:
            if action.in_cooldown(now):
                logger.debug(f"Skipping {action.name}, still in cooldown")
                continue
            if self.execute_action(action, result):
                action.last_triggered_us = now
                fired += 1
        return fired

    def execute_action(self, action: ResponseAction, result: FrameAnalysisResult) -> bool:
        try:
            if action.action_type == ResponseActionType.LOG_ONLY:
                logger.warning(
                    f"Anomaly detected on {self.device_id}: {result.anomaly_type} - "
                    f"{result.anomaly_description} (Score: {result.anomaly_score:.2f})"
                )
                return True

            if action.action_type == ResponseActionType.NX_EVENT:
                if self.event_callback is None:
                    logger.error("Event callback not set")
                    return False
                self.event_callback(result)
                return True

            if action.action_type == ResponseActionType.HTTP_REQUEST:
                if not action.target:
                    return False
                payload = action.payload or {
                    "anomalyType": result.anomaly_type,
                    "description": result.anomaly_description,
                    "score": result.anomaly_score,
                    "deviceId": self.device_id,
                    "timestamp": result.timestamp_us,
                }
                self._run_detached(self._send_http_request, action.target, payload)
                return True

            if action.action_type == ResponseActionType.SIP_CALL:
                if not self.global_config.enable_sip_integration or not action.target:
                    return False
                message = f"Anomaly detected on camera {self.device_id}. Type: {result.anomaly_type}"
                self._run_detached(self._make_sip_call, action.target, message)
                return True

            if action.action_type == ResponseActionType.EXECUTE_COMMAND:
                if not action.target:
                    return False
                self._run_detached(self._execute_command, action.target)
                return True

            logger.error(f"Unknown response action type: {action.action_type}")
            return False

        except Exception as e:
            logger.error(f"Error executing response action {action.name}: {e}")
            return False

    @staticmethod
    def _run_detached(target: Callable, *args) -> None:
        threading.Thread(target=target, args=args, daemon=True).start()

    def _send_http_request(self, url: str, payload) -> bool:
        try:
            if isinstance(payload, str):
                response = requests.post(url, data=payload, headers={"Content-Type": "application/json"},
                                         timeout=HTTP_TIMEOUT_SECS)
            else:
                response = requests.post(url, json=payload, timeout=HTTP_TIMEOUT_SECS)

            if response.status_code >= 400:
                logger.error(f"HTTP notification to {url} failed: {response.status_code}")
                return False
            return True
        except requests.RequestException as e:
            logger.error(f"HTTP notification to {url} failed: {e}")
            return False

    def _make_sip_call(self, number: str, message: str) -> bool:
        logger.info(f"Would make SIP call to {number} with message: {message}")
        return True

    def _execute_command(self, command: str) -> bool:
        logger.info(f"Executing response command: {command}")
        try:
            completed = subprocess.run(shlex.split(command), capture_output=True, timeout=COMMAND_TIMEOUT_SECS)
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            logger.error(f"Command execution failed: {e}")
            return False

        if completed.returncode != 0:
            logger.error(f"Command execution failed with code {completed.returncode}")
            return False
        return True

    def cleanup(self, now: Optional[int] = None) -> None:
        """Drop trackers inactive for longer than the expiry window."""
        now = now if now is not None else self.clock()
        with self._tracker_lock:
            expired = [t for t, tracker in self.trackers.items()
                       if now - tracker.last_detected_us > TRACKER_EXPIRY_US]
            for anomaly_type in expired:
                del self.trackers[anomaly_type]

    def reset(self) -> None:
        with self._tracker_lock:
            self.trackers.clear()

    def get_tracked_anomaly_types(self) -> List[str]:
        with self._tracker_lock:
            return sorted(self.trackers.keys())

    def get_tracker(self, anomaly_type: str) -> Optional[AnomalyTracker]:
        with self._tracker_lock:
            return self.trackers.get(anomaly_type)
