"""
Unit tests for the anomaly verification gate.

Tests cover:
- Verification by score, repetition and persistence
- One response per anomaly occurrence
- Tracker expiry
- Response action registry and cooldowns
"""

from unittest.mock import Mock, patch

import pytest

from edge.src.verification_gate import (
    AnomalyTracker, ResponseAction, ResponseActionType, VerificationGate,
)
from shared.models import FrameAnalysisResult, GlobalConfig
from shared.time_utils import MICROS_PER_SECOND


def anomaly(score: float, anomaly_type: str = "AbnormalActivity") -> FrameAnalysisResult:
    return FrameAnalysisResult(
        timestamp_us=0,
        anomaly_score=score,
        anomaly_type=anomaly_type,
        anomaly_description="Unusual activity pattern detected",
        is_anomaly=True,
    )


class FakeClock:
    def __init__(self, start: int = 1_700_000_000 * MICROS_PER_SECOND):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * MICROS_PER_SECOND)


class TestVerificationGate:
    """Test cases for VerificationGate."""

    def setup_method(self):
        self.clock = FakeClock()
        self.gate = VerificationGate("cam-1", GlobalConfig(), clock=self.clock)
        self.events = []
        self.gate.set_event_callback(self.events.append)

    def test_normal_result_ignored(self):
        """Test non-anomalous results are ignored."""
        result = FrameAnalysisResult(timestamp_us=0)

        assert not self.gate.process_anomaly(result)
        assert self.gate.get_tracked_anomaly_types() == []

    def test_high_score_verified_immediately(self):
        """Test a very high score is verified at once."""
        result = anomaly(0.9)

        assert self.gate.process_anomaly(result)
        assert self.events == [result]

    def test_medium_score_needs_two_detections(self):
        """Test a high score needs two consecutive detections."""
        assert not self.gate.process_anomaly(anomaly(0.75))
        assert self.gate.process_anomaly(anomaly(0.75))

    def test_low_score_needs_three_detections(self):
        """Test any score is verified after three detections."""
        assert not self.gate.process_anomaly(anomaly(0.4))
        assert not self.gate.process_anomaly(anomaly(0.4))
        assert self.gate.process_anomaly(anomaly(0.4))

    def test_persistent_anomaly_verified(self):
        """Test an anomaly persisting over thirty seconds is verified."""
        assert not self.gate.process_anomaly(anomaly(0.4))
        self.clock.advance(31)

        assert self.gate.process_anomaly(anomaly(0.4))

    def test_responds_once_per_occurrence(self):
        """Test responses fire once per verified occurrence."""
        assert self.gate.process_anomaly(anomaly(0.9))
        assert not self.gate.process_anomaly(anomaly(0.9))
        assert not self.gate.process_anomaly(anomaly(0.95))

        assert len(self.events) == 1
        tracker = self.gate.get_tracker("AbnormalActivity")
        assert tracker.consecutive_detections == 3
        assert tracker.max_score == 0.95

    def test_types_tracked_independently(self):
        """Test anomaly types are tracked independently."""
        self.gate.process_anomaly(anomaly(0.4, "AbnormalActivity"))
        self.gate.process_anomaly(anomaly(0.4, "UnknownVisitor"))

        assert self.gate.get_tracked_anomaly_types() == ["AbnormalActivity", "UnknownVisitor"]
        assert self.gate.get_tracker("UnknownVisitor").consecutive_detections == 1

    def test_tracker_expires_after_inactivity(self):
        """Test trackers expire after two minutes of inactivity."""
        assert self.gate.process_anomaly(anomaly(0.9))
        self.clock.advance(121)

        assert self.gate.process_anomaly(anomaly(0.9))
        assert len(self.events) == 2

    def test_verified_tracker_stays_verified(self):
        """Test lower scores never un-verify a tracker."""
        tracker = AnomalyTracker("AbnormalActivity", 0.9, 0, 0, verified=True)
        assert VerificationGate.verify(anomaly(0.1), tracker)

    def test_reset_clears_trackers(self):
        """Test reset clears every tracker."""
        self.gate.process_anomaly(anomaly(0.4))
        self.gate.reset()

        assert self.gate.get_tracked_anomaly_types() == []

    def test_default_actions_registered(self):
        """Test default response actions per anomaly type."""
        for anomaly_type in ("UnknownVisitor", "AbnormalActivity", "GeneralAnomaly"):
            names = [a.name for a in self.gate.get_response_actions(anomaly_type)]
            assert names == ["NxEvent", "LogAnomaly"]

    def test_sip_action_only_when_enabled(self):
        """Test the SIP action is registered only when SIP is enabled."""
        assert all(a.name != "SipNotification" for a in self.gate.get_response_actions("UnknownVisitor"))

        gate = VerificationGate("cam-1", GlobalConfig(enable_sip_integration=True, alarm_phone_number="+100"))
        first = gate.get_response_actions("UnknownVisitor")[0]
        assert first.name == "SipNotification"
        assert first.target == "+100"
        assert first.cooldown_ms == 300000

    def test_add_replaces_by_name(self):
        """Test adding an action with an existing name replaces it."""
        self.gate.add_response_action("AbnormalActivity", ResponseAction(
            ResponseActionType.LOG_ONLY, "LogAnomaly", priority=50))
        actions = self.gate.get_response_actions("AbnormalActivity")

        assert [a.name for a in actions] == ["LogAnomaly", "NxEvent"]
        assert actions[0].priority == 50

    def test_remove_action(self):
        """Test removing a response action."""
        assert self.gate.remove_response_action("AbnormalActivity", "NxEvent")
        assert not self.gate.remove_response_action("AbnormalActivity", "NxEvent")
        assert self.gate.process_anomaly(anomaly(0.9))
        assert self.events == []

    def test_cooldown_suppresses_repeat_actions(self):
        """Test cooldowns suppress repeated actions."""
        now = self.clock()
        assert self.gate.trigger_responses(anomaly(0.9), now) == 2
        assert self.gate.trigger_responses(anomaly(0.9), now + 30 * MICROS_PER_SECOND) == 0
        assert self.gate.trigger_responses(anomaly(0.9), now + 61 * MICROS_PER_SECOND) == 2

    def test_unregistered_type_uses_general_actions(self):
        """Test unknown types use the general actions."""
        assert self.gate.trigger_responses(anomaly(0.9, "StatisticalAnomaly"), self.clock()) == 2
        assert len(self.events) == 1

    def test_missing_event_callback_fails_action(self):
        """Test an event action fails without a callback."""
        gate = VerificationGate("cam-1", clock=self.clock)
        assert gate.trigger_responses(anomaly(0.9), self.clock()) == 1

    def test_http_request_action(self):
        """Test the HTTP action posts the anomaly payload."""
        self.gate.add_response_action("AbnormalActivity", ResponseAction(
            ResponseActionType.HTTP_REQUEST, "Webhook", target="http://hooks.local/alarm"))

        with patch.object(self.gate, "_run_detached", side_effect=lambda target, *args: target(*args)), \
                patch("edge.src.verification_gate.requests.post") as post:
            post.return_value = Mock(status_code=200)
            self.gate.trigger_responses(anomaly(0.9), self.clock())

        post.assert_called_once()
        assert post.call_args.args[0] == "http://hooks.local/alarm"
        payload = post.call_args.kwargs["json"]
        assert payload["deviceId"] == "cam-1"
        assert payload["anomalyType"] == "AbnormalActivity"

    def test_http_action_without_target_fails(self):
        """Test an HTTP action without a target fails."""
        action = ResponseAction(ResponseActionType.HTTP_REQUEST, "Webhook")
        assert not self.gate.execute_action(action, anomaly(0.9))

    def test_execute_command_action(self):
        """Test the command action runs the configured command."""
        action = ResponseAction(ResponseActionType.EXECUTE_COMMAND, "Siren", target="/usr/bin/true --loud")

        with patch.object(self.gate, "_run_detached", side_effect=lambda target, *args: target(*args)), \
                patch("edge.src.verification_gate.subprocess.run") as run:
            run.return_value = Mock(returncode=0)
            assert self.gate.execute_action(action, anomaly(0.9))

        assert run.call_args.args[0] == ["/usr/bin/true", "--loud"]

    def test_cooldown_window(self):
        """Test the cooldown window boundaries."""
        action = ResponseAction(ResponseActionType.LOG_ONLY, "Log", cooldown_ms=1000)
        assert not action.in_cooldown(5)

        action.last_triggered_us = 1_000_000
        assert action.in_cooldown(1_500_000)
        assert not action.in_cooldown(2_000_000)
