"""
Unit tests for the cognitive core.

Tests cover:
- Perception of observations into facts and inferences
- Goal escalation from threat assessment and goal progress
- Default and oracle planning, action execution
- FIFO task processing and failure isolation
- Reflection history, oracle insights and cleanup
- Worker thread life cycle
"""

import time
from datetime import datetime
from unittest.mock import Mock, patch

import pytest

from edge.src.cognitive_core import CognitiveCore, MAX_RECENT_STATES
from edge.src.strategy_manager import StrategyManager
from shared.interfaces.reasoning import IReasoningOracle
from shared.models import (
    ActionStatus, ActionType, BoundingBox, CameraInfo, DetectedObject, FrameAnalysisResult,
    GoalPriority, GoalStatus, GoalType, KnowledgeType, MotionInfo, OracleActionType,
    OracleResponse, RecommendedAction, TaskType,
)
from shared.time_utils import MICROS_PER_SECOND, from_datetime


AFTERNOON = from_datetime(datetime(2024, 1, 10, 14, 0, 0))
NIGHT = from_datetime(datetime(2024, 1, 10, 23, 30, 0))


class FakeClock:
    def __init__(self, start: int = AFTERNOON):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * MICROS_PER_SECOND)


def unknown_person(track_id: str = "p-1") -> DetectedObject:
    return DetectedObject("person", 0.9, BoundingBox(900, 460, 80, 160),
                          {"recognitionStatus": "unknown"}, track_id=track_id)


def visitor_anomaly(timestamp_us: int = AFTERNOON, score: float = 0.9) -> FrameAnalysisResult:
    return FrameAnalysisResult(
        timestamp_us=timestamp_us,
        objects=[unknown_person()],
        motion=MotionInfo(overall_motion_level=0.05),
        anomaly_score=score,
        anomaly_type="UnknownVisitor",
        anomaly_description="Unknown visitor detected for extended period",
        is_anomaly=True,
    )


class TestPerception:
    """Test cases for the perceive stage."""

    def setup_method(self):
        self.clock = FakeClock()
        self.core = CognitiveCore(clock=self.clock)

    def test_facts_extracted_per_observation(self):
        """Test an observation yields one fact per notable element."""
        self.core.perceive("cam-1", visitor_anomaly())

        contents = [k.content for k in self.core.query_knowledge("", 20)]
        assert any(c.startswith("Frame analyzed from camera cam-1") for c in contents)
        assert any(c.startswith("Motion detected in camera cam-1 with level 0.05") for c in contents)
        assert any(c.startswith("Detected person in camera cam-1") and c.endswith("(unknown)") for c in contents)
        assert any(c.startswith("Anomaly detected in camera cam-1: UnknownVisitor") for c in contents)
        assert any(c.startswith("Potential security concern") for c in contents)

    def test_empty_observation_only_records_frame(self):
        """Test an empty observation only records the processed frame."""
        self.core.perceive("cam-1", FrameAnalysisResult(timestamp_us=AFTERNOON))

        knowledge = self.core.query_knowledge("", 20)
        assert len(knowledge) == 1
        assert knowledge[0].knowledge_type == KnowledgeType.OBSERVATION

    def test_nighttime_motion_inference(self):
        """Test motion at night produces an off-hours access inference."""
        result = FrameAnalysisResult(timestamp_us=NIGHT, motion=MotionInfo(overall_motion_level=0.3))
        self.core.perceive("cam-1", result)

        inferences = self.core.query_knowledge("off-hours access")
        assert len(inferences) == 1
        assert inferences[0].knowledge_type == KnowledgeType.INFERENCE
        assert inferences[0].confidence == pytest.approx(0.85)

    def test_occupancy_inference_outside_business_hours(self):
        """Test people outside business hours produce an occupancy inference."""
        people = [unknown_person(f"p-{i}") for i in range(6)]
        self.core.perceive("cam-1", FrameAnalysisResult(timestamp_us=NIGHT, objects=people))
        assert self.core.query_knowledge("outside business hours")

    def test_no_occupancy_inference_during_business_hours(self):
        """Test no occupancy inference is drawn during business hours."""
        people = [unknown_person(f"p-{i}") for i in range(6)]
        self.core.perceive("cam-1", FrameAnalysisResult(timestamp_us=AFTERNOON, objects=people))
        assert not self.core.query_knowledge("outside business hours")

    def test_perception_recorded_as_reasoning(self):
        """Test perception is recorded as a completed reasoning step."""
        self.core.perceive("cam-1", visitor_anomaly())

        steps = self.core.get_reasoning_steps()
        assert len(steps) == 1
        assert steps[0].is_complete
        assert len(steps[0].input_ids) == 4
        assert len(steps[0].output_ids) == 1

    def test_verified_anomaly_entry_point(self):
        """Test a verified anomaly is stored as anomaly knowledge."""
        self.core.on_verified_anomaly("cam-1", visitor_anomaly())

        stored = self.core.query_knowledge("Verified anomaly")
        assert stored[0].source == "VerificationGate"
        assert self.core.pending_task_count() == 1

    def test_query_orders_by_match_count(self):
        """Test knowledge queries rank items by matching terms."""
        self.core.add_knowledge(KnowledgeType.OBSERVATION, "door open", 0.5)
        self.core.add_knowledge(KnowledgeType.OBSERVATION, "door door door", 0.5)
        self.core.add_knowledge(KnowledgeType.OBSERVATION, "window", 0.5)

        results = self.core.query_knowledge("door")
        assert [k.content for k in results] == ["door door door", "door open"]


class TestCognitiveCycle:
    """Test cases for cognize, act and execute."""

    def setup_method(self):
        self.clock = FakeClock()
        self.strategy = StrategyManager("site-1", clock=self.clock)
        self.strategy.register_camera(CameraInfo("cam-1"))
        self.core = CognitiveCore(strategy_manager=self.strategy, clock=self.clock)
        self.core.initialize(start_worker=False)

    def goals_of(self, goal_type: GoalType):
        return [g for g in self.core.goals.values() if g.goal_type == goal_type]

    def test_bootstrap_goals(self):
        """Test initialization creates the monitor and optimize goals."""
        goals = self.core.get_active_goals()

        assert [(g.goal_type, g.priority) for g in goals] == [
            (GoalType.MONITOR, GoalPriority.MEDIUM),
            (GoalType.OPTIMIZE, GoalPriority.LOW),
        ]

    def test_quiet_scene_focuses_camera(self):
        """Test a quiet scene plans and completes a focus-camera action."""
        self.core.process_pending()

        monitor = self.goals_of(GoalType.MONITOR)[0]
        assert monitor.status == GoalStatus.IN_PROGRESS
        actions = [a for a in self.core.actions.values() if a.goal_id == monitor.goal_id]
        assert actions[0].action_type == ActionType.FOCUS_CAMERA
        assert actions[0].status == ActionStatus.COMPLETED
        assert actions[0].result == "Focused monitoring on camera: cam-1"
        assert self.goals_of(GoalType.VERIFY) == []

    def test_anomaly_escalates_to_verify_and_respond(self):
        """Test a confident anomaly opens VERIFY and CRITICAL RESPOND goals."""
        self.core.process_pending()
        self.strategy.process_analysis_result("cam-1", FrameAnalysisResult(
            timestamp_us=AFTERNOON, objects=[unknown_person()]))
        self.core.process_analysis_result("cam-1", visitor_anomaly())
        self.core.process_pending()

        assert len(self.goals_of(GoalType.VERIFY)) == 1
        respond = self.goals_of(GoalType.RESPOND)
        assert len(respond) == 1
        assert respond[0].priority == GoalPriority.CRITICAL

        respond_actions = {a.action_type: a for a in self.core.actions.values()
                           if a.goal_id == respond[0].goal_id}
        assert set(respond_actions) == {ActionType.GENERATE_ALERT, ActionType.TRACK_SUBJECT}
        assert respond_actions[ActionType.GENERATE_ALERT].result.startswith("Alert generated: SECURITY ALERT (high)")
        assert respond_actions[ActionType.TRACK_SUBJECT].result == "Tracking subject: p-1"

        assert self.core.query_knowledge("Threat assessment")
        assert self.core.query_knowledge("Security situation assessment")

    def test_goal_progress_from_linked_actions(self):
        """Test goal progress follows the completion of linked actions."""
        self.core.process_analysis_result("cam-1", visitor_anomaly())
        self.core.process_pending()
        self.core.update_goals()

        respond = self.goals_of(GoalType.RESPOND)[0]
        assert respond.status == GoalStatus.ACHIEVED
        assert respond.progress == pytest.approx(1.0)
        assert respond.result == "Response complete"

    def test_overdue_goal_fails(self):
        """Test an active goal past its deadline is marked failed."""
        goal_id = self.core.add_goal(GoalType.VERIFY, "Check the gate", GoalPriority.HIGH,
                                     deadline_us=self.clock() + 60 * MICROS_PER_SECOND)

        self.core.update_goals()
        assert self.core.get_goal(goal_id).is_active()

        self.clock.advance(61)
        self.core.update_goals()

        goal = self.core.get_goal(goal_id)
        assert goal.status == GoalStatus.FAILED
        assert goal.result == "Deadline passed"
        assert goal.completion_time_us == self.clock()
        # Bootstrap goals have no deadline
        assert len(self.core.get_active_goals()) == 2

    def test_low_confidence_anomaly_only_verifies(self):
        """Test a weak anomaly opens a VERIFY goal without escalating."""
        self.core.add_knowledge(KnowledgeType.OBSERVATION, "Anomaly detected in camera cam-1: GeneralAnomaly", 0.6)
        self.core.process_pending()

        assert len(self.goals_of(GoalType.VERIFY)) == 1
        assert self.goals_of(GoalType.RESPOND) == []

    def test_initiate_response_creates_incident(self):
        """Test the initiate-response action opens an incident."""
        self.core.add_knowledge(KnowledgeType.INFERENCE, "Threat assessment: intruder near gate", 0.9)
        action_id = self.core.create_action(ActionType.INITIATE_RESPONSE, "Open incident", 0.9,
                                            parameters={"cameraId": "cam-1"})

        assert self.core.execute_action(action_id)
        action = self.core.get_action(action_id)
        assert action.status == ActionStatus.COMPLETED
        assert "Incident ID: INC-" in action.result

        incidents = self.strategy.get_active_incidents()
        assert len(incidents) == 1
        assert incidents[0].camera_id == "cam-1"

    def test_action_executes_once(self):
        """Test an action cannot be executed twice."""
        action_id = self.core.create_action(ActionType.UPDATE_MODEL, "Refresh models", 0.7)

        assert self.core.execute_action(action_id)
        assert not self.core.execute_action(action_id)
        assert not self.core.execute_action("ACT-missing")

    def test_failed_action_records_result(self):
        """Test a failing action records its result string."""
        action_id = self.core.create_action(ActionType.VERIFY_ANOMALY, "Verify", 0.9)

        assert not self.core.execute_action(action_id)
        action = self.core.get_action(action_id)
        assert action.status == ActionStatus.FAILED
        assert action.result == "No anomalies found to verify"

    def test_handler_exception_marks_action_failed(self):
        """Test an exception in an action handler fails the action."""
        self.strategy.generate_situation_report = Mock(side_effect=RuntimeError("boom"))
        action_id = self.core.create_action(ActionType.GATHER_CONTEXT, "Gather", 0.8)

        assert not self.core.execute_action(action_id)
        action = self.core.get_action(action_id)
        assert action.status == ActionStatus.FAILED
        assert "boom" in action.result

    def test_cognitive_status_report(self):
        """Test the rule-based cognitive status report."""
        status = self.core.generate_cognitive_status()

        assert "Active Goals (2):" in status
        assert "Monitor security cameras for anomalies" in status


class TestTaskQueue:
    """Test cases for task ordering and failure isolation."""

    def setup_method(self):
        self.clock = FakeClock()
        self.core = CognitiveCore(clock=self.clock)

    def test_tasks_run_in_enqueue_order(self):
        """Test tasks run in FIFO order regardless of priority."""
        seen = []
        with patch.object(self.core, "execute_task", side_effect=lambda task: seen.append(task)):
            self.core.add_knowledge(KnowledgeType.OBSERVATION, "door open", 0.5)
            self.core.process_analysis_result("cam-1", visitor_anomaly())
            self.core.execute_cognitive_cycle()
            self.core.process_pending()

        assert [t.task_type for t in seen] == [
            TaskType.UPDATE_KNOWLEDGE, TaskType.PROCESS_ANALYSIS, TaskType.REFLECT,
        ]
        assert [t.priority for t in seen] == [3, 10, 1]

    def test_failing_task_does_not_stop_processing(self):
        """Test a failing task does not stop the queue."""
        with patch.object(self.core, "perceive", side_effect=RuntimeError("bad frame")):
            self.core.process_analysis_result("cam-1", visitor_anomaly())
            self.core.add_knowledge(KnowledgeType.OBSERVATION, "Anomaly detected in camera cam-1", 0.9)
            executed = self.core.process_pending()

        assert executed >= 2
        assert any(g.goal_type == GoalType.VERIFY for g in self.core.get_active_goals())

    def test_process_pending_respects_limit(self):
        """Test process_pending stops after max_tasks."""
        for _ in range(3):
            self.core.execute_cognitive_cycle()

        assert self.core.process_pending(max_tasks=2) == 2
        assert self.core.pending_task_count() == 1


class TestReflection:
    """Test cases for reflection and housekeeping."""

    def setup_method(self):
        self.clock = FakeClock()
        self.oracle = Mock(spec=IReasoningOracle)
        self.core = CognitiveCore(oracle=self.oracle, clock=self.clock)

    def test_state_history_is_bounded(self):
        """Test the reflection history keeps the most recent states."""
        core = CognitiveCore(clock=self.clock)
        for _ in range(MAX_RECENT_STATES + 5):
            core.reflect()
            self.clock.advance(1)

        assert len(core.get_recent_states()) == MAX_RECENT_STATES

    def test_oracle_consulted_once_history_is_long_enough(self):
        """Test reflection consults the oracle once enough history exists."""
        self.oracle.request.return_value = OracleResponse(
            reasoning="We should improve verification thresholds at night. Ok.",
            confidence_score=0.8,
            actions=[
                RecommendedAction(OracleActionType.RECOMMEND, "Create goal to reduce false alarms", 0.8),
                RecommendedAction(OracleActionType.PREDICT, "Update model for the loading bay", 0.7),
            ],
            success=True,
        )

        for _ in range(4):
            self.core.reflect()
        self.oracle.request.assert_not_called()

        self.core.reflect()
        assert self.oracle.request.call_count == 1

        insights = self.core.query_knowledge("improve verification")
        assert insights[0].knowledge_type == KnowledgeType.META_KNOWLEDGE
        assert any(g.goal_type == GoalType.OPTIMIZE for g in self.core.get_active_goals())
        assert any(a.action_type == ActionType.UPDATE_MODEL for a in self.core.get_ongoing_actions())

    def test_failed_oracle_reflection_is_harmless(self):
        """Test a failed oracle reflection changes nothing."""
        self.oracle.request.return_value = OracleResponse.failure("Request timed out after 30s")

        for _ in range(5):
            self.core.reflect()

        assert len(self.core.get_recent_states()) == 5
        assert self.core.get_active_goals() == []

    def test_assessment_falls_back_to_rules(self):
        """Test situation assessment without an oracle uses keyword rules."""
        self.oracle.request.return_value = OracleResponse.failure("offline")
        self.core.add_knowledge(KnowledgeType.OBSERVATION, "Anomaly detected in camera cam-1: Intrusion", 0.9,
                                "AnomalyDetection")

        self.core.assess_situation()

        assessment = self.core.query_knowledge("Security situation assessment")
        assert assessment[0].confidence == pytest.approx(0.81)
        traces = [r.trace for r in self.core.get_reasoning_steps()]
        assert "Failed to generate reasoning with oracle" in traces
        assert "Rule-based keyword assessment" in traces

    def test_assessment_with_oracle(self):
        """Test situation assessment uses the oracle answer."""
        self.oracle.request.return_value = OracleResponse(
            reasoning="A person is loitering near the gate. Concern level is medium.",
            confidence_score=0.8,
            success=True,
        )
        self.core.add_knowledge(KnowledgeType.OBSERVATION, "Detected person in camera cam-1", 0.9)

        self.core.assess_situation()

        outputs = [k for k in self.core.query_knowledge("", 10) if k.source == "SituationAssessment"]
        assert len(outputs) == 2
        assert all(k.confidence == pytest.approx(0.72) for k in outputs)

    def test_oracle_plan_maps_action_types(self):
        """Test oracle action types map to internal action types."""
        self.oracle.request.return_value = OracleResponse(
            reasoning="Respond",
            confidence_score=0.8,
            actions=[
                RecommendedAction(OracleActionType.ALERT, "Alert guards", 0.9),
                RecommendedAction(OracleActionType.CROSS_REFERENCE, "Check other cameras", 0.6),
            ],
            success=True,
        )
        self.core.add_goal(GoalType.RESPOND, "Respond to intrusion", GoalPriority.CRITICAL)

        planned = self.core.plan_actions()

        types = [self.core.get_action(action_id).action_type for action_id in planned]
        assert types == [ActionType.GENERATE_ALERT, ActionType.CORRELATE_EVENTS]

    def test_cleanup_drops_old_records(self):
        """Test cleanup drops stale knowledge and finished actions."""
        core = CognitiveCore(clock=self.clock)
        core.add_knowledge(KnowledgeType.OBSERVATION, "old fact", 0.5)
        action_id = core.create_action(ActionType.UPDATE_MODEL, "Refresh", 0.5)
        core.execute_action(action_id)

        self.clock.advance(2 * 3600)
        core.cleanup_old_data()
        assert core.query_knowledge("old fact")
        assert core.get_action(action_id) is None

        self.clock.advance(23 * 3600)
        core.cleanup_old_data()
        assert core.query_knowledge("old fact") == []

    def test_cleanup_drops_finished_goals(self):
        """Test cleanup drops finished goals after the retention window."""
        core = CognitiveCore(clock=self.clock)
        finished = core.add_goal(GoalType.VERIFY, "Verify", GoalPriority.HIGH)
        active = core.add_goal(GoalType.MONITOR, "Watch", GoalPriority.MEDIUM)
        core.update_goal_status(finished, GoalStatus.ACHIEVED)

        self.clock.advance(30 * 60)
        core.cleanup_old_data()
        assert core.get_goal(finished) is not None

        self.clock.advance(31 * 60)
        core.cleanup_old_data()
        assert core.get_goal(finished) is None
        assert core.get_goal(active) is not None


class TestWorker:
    """Test cases for the worker thread."""

    def test_worker_processes_and_shuts_down(self):
        """Test the worker thread drains tasks and stops on shutdown."""
        core = CognitiveCore()
        core.initialize()
        assert core.is_running

        core.process_analysis_result("cam-1", visitor_anomaly(timestamp_us=AFTERNOON))
        deadline = time.time() + 5
        while time.time() < deadline and not core.query_knowledge("Anomaly detected in camera cam-1"):
            time.sleep(0.05)

        core.shutdown()
        assert not core.is_running
        assert core.query_knowledge("Anomaly detected in camera cam-1")

    def test_initialize_is_idempotent(self):
        """Test initializing twice keeps a single set of goals."""
        core = CognitiveCore()
        core.initialize(start_worker=False)
        core.initialize(start_worker=False)

        assert len(core.get_active_goals()) == 2
