"""
Unit tests for the per-camera device agent.

Tests cover:
- Learning mode, switching to detection and model persistence
- Unknown visitor verification and outbound events
- Strategy manager and cognitive core hand-off
- Configuration change propagation
"""

from concurrent.futures import Future
from datetime import datetime
from unittest.mock import Mock

import numpy as np
import pytest

from edge.src.anomaly_engine import GaussianModel
from edge.src.config_service import ConfigService
from edge.src.device_agent import (
    DeviceAgent, EVENT_STATUS, EVENT_UNKNOWN_VISITOR, LEARNING_FRAME_COUNT,
)
from edge.src.strategy_manager import StrategyManager
from shared.interfaces.cognition import ICognitiveCore
from shared.interfaces.reasoning import IReasoningOracle
from shared.interfaces.strategy import IStrategyManager
from shared.models import (
    BoundingBox, CameraInfo, DetectedObject, DeviceConfig, GlobalConfig, IncidentType, KnowledgeType,
    OracleResponse, RequestType,
)
from shared.time_utils import MICROS_PER_SECOND, from_datetime


AFTERNOON = from_datetime(datetime(2024, 1, 10, 14, 0, 0))


class FakeClock:
    def __init__(self, start: int = AFTERNOON):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * MICROS_PER_SECOND)


def unknown_person(track_id: str = "visitor-1") -> DetectedObject:
    return DetectedObject("person", 0.9, BoundingBox(900, 460, 80, 160),
                          {"recognitionStatus": "unknown"}, track_id=track_id)


class TestDeviceAgent:
    """Test cases for DeviceAgent."""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path):
        self.storage = str(tmp_path)
        self.clock = FakeClock()
        self.config_service = ConfigService(GlobalConfig(data_storage_path=self.storage))
        self.config_service.update_device_config(DeviceConfig(device_id="cam-1", unknown_visitor_threshold_secs=1))
        self.events = []

    def make_agent(self, **kwargs) -> DeviceAgent:
        agent = DeviceAgent("cam-1", self.config_service, storage_path=self.storage, clock=self.clock, **kwargs)
        agent.set_event_callback(self.events.append)
        return agent

    def feed_visitor(self, agent: DeviceAgent, frames: int):
        results = []
        for _ in range(frames):
            results.append(agent.process_frame([unknown_person()], 0.0, self.clock()))
            self.clock.advance(1)
        return results

    def test_starts_in_learning_mode_without_models(self):
        """Test the agent learns when no models are stored."""
        agent = self.make_agent()

        assert agent.learning_mode
        assert self.events[0].event_type_id == EVENT_STATUS
        assert agent.get_status()["mode"] == "learning"

    def test_learning_completes_and_models_persist(self):
        """Test learning ends after enough frames and models are saved."""
        agent = self.make_agent()
        for _ in range(LEARNING_FRAME_COUNT):
            agent.process_frame([], 0.02, self.clock())
            self.clock.advance(0.5)

        assert not agent.learning_mode
        assert agent.detector.is_trained(14)
        assert self.events[-1].caption == "Learning Complete"

        reloaded = DeviceAgent("cam-1", self.config_service, storage_path=self.storage, clock=self.clock)
        assert not reloaded.learning_mode

    def test_quiet_frames_are_not_anomalies(self):
        """Test quiet frames do not count as anomalies."""
        agent = self.make_agent()

        result = agent.process_frame([], 0.0, self.clock())

        assert not result.is_anomaly
        assert agent.anomaly_count == 0

    def test_unknown_visitor_verified_once(self):
        """Test a lingering unknown visitor raises one event."""
        agent = self.make_agent()

        results = self.feed_visitor(agent, 6)

        assert not results[0].is_anomaly
        assert not results[1].is_anomaly
        assert all(r.anomaly_type == "UnknownVisitor" for r in results[2:])
        visitor_events = [e for e in self.events if e.event_type_id == EVENT_UNKNOWN_VISITOR]
        assert len(visitor_events) == 1
        assert visitor_events[0].caption == "Unknown Visitor Detected"
        assert visitor_events[0].attributes["anomalyType"] == "UnknownVisitor"
        assert agent.anomaly_count == 1

    def test_verified_anomaly_opens_incident(self):
        """Test a verified anomaly opens an incident."""
        strategy = StrategyManager("site-1", clock=self.clock)
        strategy.register_camera(CameraInfo("cam-1"))
        agent = self.make_agent(strategy_manager=strategy)

        self.feed_visitor(agent, 5)

        incidents = strategy.get_active_incidents()
        assert len(incidents) == 1
        assert incidents[0].incident_type == IncidentType.UNKNOWN_VISITOR
        assert incidents[0].subject_ids == ["visitor-1"]
        assert strategy.get_tracked_subject("visitor-1") is not None

    def test_unverified_anomaly_only_tracks_subjects(self):
        """Test an unverified anomaly updates subjects without opening an incident."""
        strategy = Mock(spec=IStrategyManager)
        agent = self.make_agent(strategy_manager=strategy)
        agent.gate.process_anomaly = Mock(return_value=False)

        results = self.feed_visitor(agent, 4)

        assert [r.is_anomaly for r in results] == [False, False, True, True]
        assert strategy.process_analysis_result.call_count == 2
        assert strategy.update_tracked_subject.call_count == 2
        device_id, obj, timestamp_us = strategy.update_tracked_subject.call_args.args
        assert device_id == "cam-1"
        assert obj.track_id == "visitor-1"
        assert timestamp_us == results[-1].timestamp_us
        assert agent.anomaly_count == 0

    def test_cognitive_core_receives_observations(self):
        """Test observations reach the cognitive core once per interval."""
        core = Mock(spec=ICognitiveCore)
        agent = self.make_agent(cognitive_core=core)

        self.feed_visitor(agent, 5)

        # One observation per reasoning interval
        assert core.process_analysis_result.call_count == 1
        core.on_verified_anomaly.assert_called_once()
        device_id, result = core.on_verified_anomaly.call_args.args
        assert device_id == "cam-1"
        assert result.anomaly_type == "UnknownVisitor"

    def test_object_callback_only_with_objects(self):
        """Test the object callback fires only for frames with objects."""
        agent = self.make_agent()
        reports = []
        agent.set_object_callback(lambda device_id, result: reports.append(device_id))

        agent.process_frame([], 0.0, self.clock())
        agent.process_frame([unknown_person()], 0.0, self.clock())

        assert reports == ["cam-1"]

    def test_metadata_tick(self):
        """Test an object-only metadata tick is processed."""
        agent = self.make_agent()

        result = agent.process_metadata([unknown_person()], self.clock())

        assert result.motion_level == 0.0
        assert agent.get_status()["processedFrames"] == 1

    def test_config_change_reaches_pipeline(self):
        """Test configuration changes reach the detector."""
        agent = self.make_agent()

        self.config_service.set_anomaly_threshold("cam-1", 0.9)

        assert agent.detector.get_threshold() == pytest.approx(0.9)
        assert agent.config.anomaly_threshold == pytest.approx(0.9)

    def test_failing_event_callback_does_not_break_pipeline(self):
        """Test a failing event callback does not stop processing."""
        agent = self.make_agent()
        agent.set_event_callback(Mock(side_effect=RuntimeError("host gone")))

        results = self.feed_visitor(agent, 5)

        assert results[-1].is_anomaly
        assert agent.get_status()["processedFrames"] == 5


class TestAnomalyAnalysis:
    """Test cases for oracle analysis of verified anomalies."""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path):
        self.clock = FakeClock()
        self.config_service = ConfigService(GlobalConfig(data_storage_path=str(tmp_path)))
        self.config_service.update_device_config(DeviceConfig(device_id="cam-1", unknown_visitor_threshold_secs=1))
        self.oracle = Mock(spec=IReasoningOracle)
        self.core = Mock(spec=ICognitiveCore)
        self.agent = DeviceAgent("cam-1", self.config_service, cognitive_core=self.core, oracle=self.oracle,
                                 storage_path=str(tmp_path), clock=self.clock)

    def answer(self, response: OracleResponse) -> None:
        future = Future()
        future.set_result(response)
        self.oracle.submit.return_value = future

    def feed_visitor(self, frames: int) -> None:
        for _ in range(frames):
            self.agent.process_frame([unknown_person()], 0.0, self.clock())
            self.clock.advance(1)

    def test_observations_recorded_as_context(self):
        """Test frames with content are recorded as context."""
        self.agent.process_frame([], 0.0, self.clock())
        self.agent.process_frame([unknown_person()], 0.0, self.clock())

        # observation summary plus one object item
        assert len(self.agent.context) == 2
        assert len(self.agent.context.get_context_for_object("visitor-1")) == 1

    def test_confident_analysis_becomes_knowledge(self):
        """Test a confident oracle analysis becomes inference knowledge."""
        self.answer(OracleResponse(reasoning="Visitor is lingering at the door", confidence_score=0.9, success=True))

        self.feed_visitor(5)

        self.oracle.submit.assert_called_once()
        request = self.oracle.submit.call_args.args[0]
        assert request.request_type == RequestType.ANOMALY_ANALYSIS
        assert request.context_items
        self.core.add_knowledge.assert_called_once()
        knowledge_type, content, confidence, source = self.core.add_knowledge.call_args.args[:4]
        assert knowledge_type == KnowledgeType.INFERENCE
        assert content.endswith("Visitor is lingering at the door")
        assert source == "AnomalyAnalysis"

    def test_low_confidence_analysis_ignored(self):
        """Test a low-confidence analysis is ignored."""
        self.answer(OracleResponse(reasoning="Hard to tell", confidence_score=0.3, success=True))

        self.feed_visitor(5)

        self.core.add_knowledge.assert_not_called()

    def test_failed_analysis_ignored(self):
        """Test a failed analysis is ignored."""
        self.answer(OracleResponse.failure("Request timed out after 30s"))

        self.feed_visitor(5)

        self.core.add_knowledge.assert_not_called()

    def test_analysis_disabled_by_config(self):
        """Test no analysis is requested when AI reasoning is disabled."""
        self.config_service.update_device_config(DeviceConfig(
            device_id="cam-1", unknown_visitor_threshold_secs=1, enable_ai_reasoning=False))

        self.feed_visitor(5)

        self.oracle.submit.assert_not_called()


class TestModelRecovery:
    """Test cases for starting over damaged model files."""

    def test_truncated_model_file_falls_back_to_learning(self, tmp_path):
        """Test a truncated model file leaves the agent learning."""
        model = GaussianModel()
        model.train(np.array([[0.0, 1.0], [1.0, 2.0], [2.0, 4.0]]))
        path = tmp_path / "cam-1" / "model_hour_14.npz"
        assert model.save(str(path))
        data = path.read_bytes()
        path.write_bytes(data[:len(data) // 2])
        config_service = ConfigService(GlobalConfig(data_storage_path=str(tmp_path)))

        agent = DeviceAgent("cam-1", config_service, storage_path=str(tmp_path), clock=FakeClock())

        assert agent.learning_mode
        assert not agent.detector.is_trained(14)
        assert not agent.process_frame([], 0.0, AFTERNOON).is_anomaly
