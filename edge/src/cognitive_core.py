"""
Goal-directed cognitive loop for the security reasoning agent.

Observations are perceived into knowledge, knowledge is assessed into
threats and goals, goals are planned into actions and actions are executed.
A single worker thread drains a FIFO task queue; reflection and cleanup run
periodically from the same worker.
"""

import copy
import queue
import re
import threading
from collections import deque
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger

from shared.interfaces.cognition import ICognitiveCore
from shared.interfaces.config import IConfigService
from shared.interfaces.reasoning import IReasoningOracle
from shared.interfaces.strategy import IStrategyManager
from shared.models import (
    Action, ActionStatus, ActionType, ContextItem, ContextItemType, DeviceConfig,
    FrameAnalysisResult, Goal, GoalPriority, GoalStatus, GoalType, IncidentSeverity,
    IncidentType, KnowledgeItem, KnowledgeType, MotionInfo, OracleActionType, Reasoning,
    ReasoningType, RequestType, StateSnapshot, Task, TaskType,
)
from shared.time_utils import (
    MICROS_PER_HOUR, MICROS_PER_MINUTE, MICROS_PER_SECOND, format_timestamp, generate_id,
    hour_of_day, now_us, time_of_day_seconds,
)


RECENT_KNOWLEDGE_WINDOW = 20
MAX_RECENT_STATES = 100
MIN_STATES_FOR_REFLECTION = 5
MAX_ORACLE_INSIGHTS = 3
MAX_REFLECTION_INSIGHTS = 5

CLEANUP_INTERVAL_US = 60 * MICROS_PER_SECOND
REFLECTION_INTERVAL_US = 5 * MICROS_PER_MINUTE
KNOWLEDGE_RETENTION_US = 24 * MICROS_PER_HOUR
FINISHED_RETENTION_US = MICROS_PER_HOUR
IDLE_WAIT_SECS = 1.0

MOTION_FACT_THRESHOLD = 0.01
THREAT_REPORT_THRESHOLD = 0.5
RESPOND_THRESHOLD = 0.7

THREAT_INDICATORS = (
    "unknown", "unauthorized", "suspicious", "unusual",
    "anomaly", "unusual activity", "unexpected",
)

INSIGHT_INDICATORS = (
    "suggest", "recommend", "could", "should", "might", "consider",
    "opportunity", "improve", "insight", "pattern", "notice", "observed",
    "perform", "efficiency", "effective", "optimize",
)

ANOMALY_INFERENCES = {
    "UnknownVisitor": ("Potential security concern: Unknown individual present in monitored area", 0.8),
    "Loitering": ("Suspicious behavior: Subject lingering in area for extended period", 0.8),
    "AbnormalActivity": ("Unusual activity pattern detected: May indicate unauthorized access or behavior", 0.7),
}

ORACLE_ACTION_TYPES = {
    OracleActionType.MONITOR: ActionType.FOCUS_CAMERA,
    OracleActionType.ALERT: ActionType.GENERATE_ALERT,
    OracleActionType.TRACK: ActionType.TRACK_SUBJECT,
    OracleActionType.ANALYZE_FURTHER: ActionType.GATHER_CONTEXT,
    OracleActionType.CROSS_REFERENCE: ActionType.CORRELATE_EVENTS,
    OracleActionType.PREDICT: ActionType.UPDATE_MODEL,
    OracleActionType.RECOMMEND: ActionType.REQUEST_ASSISTANCE,
}

# Default plan per goal type: (action type, description, priority, parameters)
DEFAULT_GOAL_ACTIONS = {
    GoalType.MONITOR: [
        (ActionType.FOCUS_CAMERA, "Focus monitoring on active cameras", 0.7, {"duration": 300}),
    ],
    GoalType.VERIFY: [
        (ActionType.VERIFY_ANOMALY, "Verify reported anomaly", 0.9, {}),
        (ActionType.GATHER_CONTEXT, "Gather additional context", 0.8, {}),
    ],
    GoalType.RESPOND: [
        (ActionType.GENERATE_ALERT, "Generate security alert for operators", 0.95, {"priority": "high"}),
        (ActionType.TRACK_SUBJECT, "Track suspicious subjects", 0.9, {}),
    ],
}

# Knowledge written by action handlers; cognition does not react to it
ACTION_SOURCES = frozenset({
    "ActionExecution", "AnomalyVerification", "ContextGathering", "EventCorrelation",
    "SubjectTracking", "SystemCoordination", "ModelUpdate", "AssistanceRequest",
    "SystemReflection",
})

SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]")


class CognitiveCore(ICognitiveCore):
    """
    Perceive, cognize, act and reflect over goal, knowledge, reasoning and action stores.

    Each store has its own lock. Locks are taken one at a time and released
    before the next is acquired, so readers may see a slightly stale view of
    one store relative to another but never a half-written record.
    """

    def __init__(self, strategy_manager: Optional[IStrategyManager] = None,
                 oracle: Optional[IReasoningOracle] = None,
                 config_service: Optional[IConfigService] = None,
                 clock: Callable[[], int] = now_us):
        """
        Initialize cognitive core.

        Args:
            strategy_manager: Optional strategy manager for cameras, subjects and incidents
            oracle: Optional reasoning oracle; rule-based fallbacks are used without it
            config_service: Optional source of per-camera business hours
            clock: Microsecond clock, injectable for tests
        """
        self.strategy_manager = strategy_manager
        self.oracle = oracle
        self.config_service = config_service
        self.clock = clock

        self.goals: Dict[str, Goal] = {}
        self.knowledge: Dict[str, KnowledgeItem] = {}
        self.reasoning_steps: Dict[str, Reasoning] = {}
        self.actions: Dict[str, Action] = {}
        self.recent_states: deque = deque(maxlen=MAX_RECENT_STATES)

        self._goal_lock = threading.Lock()
        self._knowledge_lock = threading.Lock()
        self._reasoning_lock = threading.Lock()
        self._action_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()

        self._tasks: "queue.Queue[Optional[Task]]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._running = False
        self._initialized = False
        self._last_cleanup_us = 0
        self._next_reflection_us = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def initialize(self, start_worker: bool = True) -> bool:
        """Create the bootstrap goals and start the worker thread."""
        with self._lifecycle_lock:
            if self._initialized:
                return True
            self._initialized = True

            now = self.clock()
            self._last_cleanup_us = now
            self._next_reflection_us = now + REFLECTION_INTERVAL_US

            if start_worker:
                self._running = True
                self._worker = threading.Thread(target=self._worker_loop, name="cognitive-core", daemon=True)
                self._worker.start()

        self.add_goal(GoalType.MONITOR, "Monitor security cameras for anomalies", GoalPriority.MEDIUM)
        self.add_goal(GoalType.OPTIMIZE, "Optimize system performance and reduce false alarms", GoalPriority.LOW)

        logger.info(f"Cognitive core initialized (oracle: {'yes' if self.oracle else 'no'}, "
                    f"strategy manager: {'yes' if self.strategy_manager else 'no'})")
        return True

    def shutdown(self) -> None:
        with self._lifecycle_lock:
            if not self._running:
                return
            self._running = False
            self._tasks.put(None)
            worker = self._worker

        if worker is not None:
            worker.join(timeout=5)
        logger.info("Cognitive core shut down")

    # Task queue

    def _enqueue(self, task_type: TaskType, priority: int, payload: Optional[Dict[str, Any]] = None) -> None:
        self._tasks.put(Task(
            task_type=task_type,
            priority=priority,
            payload=payload or {},
            enqueue_time_us=self.clock(),
        ))

    def pending_task_count(self) -> int:
        return self._tasks.qsize()

    def process_pending(self, max_tasks: Optional[int] = None) -> int:
        """
        Drain queued tasks on the calling thread.

        Used when the core runs without its worker thread. Returns the number
        of tasks executed.
        """
        executed = 0
        while max_tasks is None or executed < max_tasks:
            try:
                task = self._tasks.get_nowait()
            except queue.Empty:
                break
            if task is None:
                break
            self._run_task(task)
            executed += 1
        return executed

    def _worker_loop(self) -> None:
        while self._running:
            try:
                task = self._tasks.get(timeout=IDLE_WAIT_SECS)
            except queue.Empty:
                task = None
                if not self._running:
                    break
            else:
                if task is None:
                    break
                self._run_task(task)

            self._housekeeping()

    def _run_task(self, task: Task) -> None:
        try:
            self.execute_task(task)
        except Exception as e:
            logger.error(f"Error executing {task.task_type.value} task: {e}")

    def _housekeeping(self) -> None:
        now = self.clock()
        if now - self._last_cleanup_us > CLEANUP_INTERVAL_US:
            self.cleanup_old_data()
            self._last_cleanup_us = now
        if now >= self._next_reflection_us:
            self._next_reflection_us = now + REFLECTION_INTERVAL_US
            self._enqueue(TaskType.REFLECT, 1)

    def execute_task(self, task: Task) -> None:
        payload = task.payload
        if task.task_type == TaskType.PROCESS_ANALYSIS:
            self.perceive(payload["device_id"], self._result_from_payload(payload))
        elif task.task_type == TaskType.UPDATE_KNOWLEDGE:
            self.cognize()
        elif task.task_type == TaskType.EVALUATE_GOALS:
            self.update_goals()
            self._enqueue(TaskType.SELECT_ACTIONS, 6)
        elif task.task_type == TaskType.SELECT_ACTIONS:
            self.act()
        elif task.task_type == TaskType.EXECUTE_ACTION:
            self.execute_action(payload["action_id"])
        elif task.task_type == TaskType.REFLECT:
            self.reflect()

    # Public API

    def process_analysis_result(self, device_id: str, result: FrameAnalysisResult) -> None:
        self._enqueue(TaskType.PROCESS_ANALYSIS, 10 if result.is_anomaly else 5, {
            "device_id": device_id,
            "timestamp_us": result.timestamp_us,
            "is_anomaly": result.is_anomaly,
            "anomaly_score": result.anomaly_score,
            "anomaly_type": result.anomaly_type,
            "anomaly_description": result.anomaly_description,
            "objects": copy.deepcopy(result.objects),
            "motion_level": result.motion_level,
        })

    def on_verified_anomaly(self, device_id: str, result: FrameAnalysisResult) -> None:
        """Entry point for anomalies confirmed by the verification gate."""
        self._store_knowledge(
            KnowledgeType.OBSERVATION,
            f"Verified anomaly on camera {device_id}: {result.anomaly_type} - {result.anomaly_description}",
            result.anomaly_score,
            "VerificationGate",
            {"deviceId": device_id, "anomalyType": result.anomaly_type},
        )
        self.process_analysis_result(device_id, result)

    def add_goal(self, goal_type: GoalType, description: str,
                 priority: GoalPriority = GoalPriority.MEDIUM,
                 parameters: Optional[Dict[str, Any]] = None, deadline_us: int = 0) -> str:
        goal_id = self._new_goal(goal_type, description, priority, parameters, deadline_us)
        self._enqueue(TaskType.EVALUATE_GOALS, 5)
        return goal_id

    def _new_goal(self, goal_type: GoalType, description: str, priority: GoalPriority,
                  parameters: Optional[Dict[str, Any]] = None, deadline_us: int = 0) -> str:
        now = self.clock()
        goal = Goal(
            goal_id=generate_id("GOAL", now),
            goal_type=goal_type,
            description=description,
            priority=priority,
            creation_time_us=now,
            deadline_us=deadline_us,
            parameters=dict(parameters or {}),
        )
        with self._goal_lock:
            self.goals[goal.goal_id] = goal
        logger.info(f"New goal {goal.goal_id} ({goal_type.value}, {priority.name}): {description}")
        return goal.goal_id

    def update_goal_status(self, goal_id: str, status: GoalStatus) -> bool:
        with self._goal_lock:
            goal = self.goals.get(goal_id)
            if goal is None:
                return False
            goal.status = status
            if status in (GoalStatus.ACHIEVED, GoalStatus.FAILED):
                goal.progress = 1.0
            if goal.is_completed():
                goal.completion_time_us = self.clock()
            return True

    def get_goal(self, goal_id: str) -> Optional[Goal]:
        with self._goal_lock:
            goal = self.goals.get(goal_id)
            return copy.deepcopy(goal) if goal else None

    def get_active_goals(self) -> List[Goal]:
        with self._goal_lock:
            active = [copy.deepcopy(g) for g in self.goals.values() if g.is_active()]
        return sorted(active, key=lambda g: (g.priority, g.creation_time_us))

    def add_knowledge(self, knowledge_type: KnowledgeType, content: str, confidence: float,
                      source: str = "", metadata: Optional[Dict[str, Any]] = None) -> str:
        item_id = self._store_knowledge(knowledge_type, content, confidence, source, metadata)
        self._enqueue(TaskType.UPDATE_KNOWLEDGE, 3, {"knowledge_id": item_id})
        return item_id

    def _store_knowledge(self, knowledge_type: KnowledgeType, content: str, confidence: float,
                         source: str = "", metadata: Optional[Dict[str, Any]] = None,
                         related_ids: Optional[List[str]] = None) -> str:
        now = self.clock()
        item = KnowledgeItem(
            item_id=generate_id("KNOW", now),
            knowledge_type=knowledge_type,
            content=content,
            confidence=confidence,
            timestamp_us=now,
            source=source,
            related_ids=list(related_ids or []),
            metadata=dict(metadata or {}),
        )
        with self._knowledge_lock:
            self.knowledge[item.item_id] = item
        logger.debug(f"Knowledge {item.item_id} [{knowledge_type.value}] {content}")
        return item.item_id

    def query_knowledge(self, query: str, max_results: int = 10) -> List[KnowledgeItem]:
        with self._knowledge_lock:
            items = [copy.deepcopy(item) for item in self.knowledge.values()]

        if not query:
            items.sort(key=lambda item: item.timestamp_us, reverse=True)
            return items[:max_results]

        needle = query.lower()
        matches = [(item.content.lower().count(needle), item) for item in items]
        matches = [(count, item) for count, item in matches if count > 0]
        matches.sort(key=lambda pair: (pair[0], pair[1].timestamp_us), reverse=True)
        return [item for _, item in matches[:max_results]]

    def _recent_knowledge(self, exclude_sources: frozenset = ACTION_SOURCES) -> List[KnowledgeItem]:
        """Newest still-valid knowledge, skipping the given sources."""
        now = self.clock()
        recent = self.query_knowledge("", RECENT_KNOWLEDGE_WINDOW)
        return [item for item in recent if item.is_valid(now) and item.source not in exclude_sources]

    def create_action(self, action_type: ActionType, description: str, priority: float = 0.5,
                      goal_id: str = "", parameters: Optional[Dict[str, Any]] = None) -> str:
        action_id = self._new_action(action_type, description, priority, goal_id, parameters)
        self._enqueue(TaskType.EXECUTE_ACTION, int(priority * 10), {"action_id": action_id})
        return action_id

    def _new_action(self, action_type: ActionType, description: str, priority: float,
                    goal_id: str = "", parameters: Optional[Dict[str, Any]] = None,
                    expected_utility: float = 0.5) -> str:
        now = self.clock()
        action = Action(
            action_id=generate_id("ACT", now),
            action_type=action_type,
            description=description,
            priority=priority,
            goal_id=goal_id,
            expected_utility=expected_utility,
            creation_time_us=now,
            parameters=dict(parameters or {}),
        )
        with self._action_lock:
            self.actions[action.action_id] = action
        return action.action_id

    def get_action(self, action_id: str) -> Optional[Action]:
        with self._action_lock:
            action = self.actions.get(action_id)
            return copy.deepcopy(action) if action else None

    def get_ongoing_actions(self) -> List[Action]:
        with self._action_lock:
            ongoing = [copy.deepcopy(a) for a in self.actions.values() if not a.is_finished()]
        return sorted(ongoing, key=lambda a: a.priority, reverse=True)

    def get_reasoning_steps(self) -> List[Reasoning]:
        with self._reasoning_lock:
            steps = [copy.deepcopy(r) for r in self.reasoning_steps.values()]
        return sorted(steps, key=lambda r: r.start_time_us)

    def _record_reasoning(self, reasoning: Reasoning) -> None:
        with self._reasoning_lock:
            self.reasoning_steps[reasoning.reasoning_id] = reasoning

    def execute_cognitive_cycle(self) -> None:
        self._enqueue(TaskType.REFLECT, 1)

    # Perceive

    @staticmethod
    def _result_from_payload(payload: Dict[str, Any]) -> FrameAnalysisResult:
        return FrameAnalysisResult(
            timestamp_us=payload["timestamp_us"],
            objects=payload.get("objects", []),
            motion=MotionInfo(overall_motion_level=payload.get("motion_level", 0.0)),
            anomaly_score=payload.get("anomaly_score", 0.0),
            anomaly_type=payload.get("anomaly_type", ""),
            anomaly_description=payload.get("anomaly_description", ""),
            is_anomaly=payload.get("is_anomaly", False),
        )

    def perceive(self, device_id: str, result: FrameAnalysisResult) -> None:
        start = self.clock()
        fact_ids = self.extract_facts(device_id, result)
        inference_ids = self.update_situation_model(device_id, result)

        self._record_reasoning(Reasoning(
            reasoning_id=generate_id("REAS", start),
            reasoning_type=ReasoningType.PERCEPTION,
            input_ids=fact_ids,
            output_ids=inference_ids,
            trace=f"Perceived frame from camera {device_id}: {len(fact_ids)} facts, {len(inference_ids)} inferences",
            confidence=1.0,
            start_time_us=start,
            end_time_us=self.clock(),
            is_complete=True,
        ))
        self._enqueue(TaskType.UPDATE_KNOWLEDGE, 7 if result.is_anomaly else 3)

    def extract_facts(self, device_id: str, result: FrameAnalysisResult) -> List[str]:
        """Store one observation per notable fact of the frame."""
        ids = [self._store_knowledge(
            KnowledgeType.OBSERVATION,
            f"Frame analyzed from camera {device_id} at {format_timestamp(result.timestamp_us)}",
            1.0, "FrameAnalysis",
        )]

        if result.motion_level > MOTION_FACT_THRESHOLD:
            ids.append(self._store_knowledge(
                KnowledgeType.OBSERVATION,
                f"Motion detected in camera {device_id} with level {result.motion_level:.2f}",
                result.motion_level, "MotionDetection",
            ))

        for obj in result.objects:
            content = f"Detected {obj.type_id} in camera {device_id} with confidence {obj.confidence:.2f}"
            if obj.recognition_status:
                content += f" ({obj.recognition_status})"
            ids.append(self._store_knowledge(
                KnowledgeType.OBSERVATION, content, obj.confidence, "ObjectDetection",
                {"trackId": obj.track_id, "typeId": obj.type_id},
            ))

        if result.is_anomaly:
            ids.append(self._store_knowledge(
                KnowledgeType.OBSERVATION,
                f"Anomaly detected in camera {device_id}: {result.anomaly_type} - {result.anomaly_description}",
                result.anomaly_score, "AnomalyDetection",
            ))
        return ids

    def _is_business_hours(self, device_id: str, timestamp_us: int) -> bool:
        if self.config_service is not None:
            config = self.config_service.get_device_config(device_id)
        else:
            config = DeviceConfig(device_id=device_id)
        return config.is_business_hours(time_of_day_seconds(timestamp_us))

    def update_situation_model(self, device_id: str, result: FrameAnalysisResult) -> List[str]:
        """Derive inferences from anomaly type, time of day and occupancy."""
        ids = []
        if result.is_anomaly and result.anomaly_type in ANOMALY_INFERENCES:
            text, factor = ANOMALY_INFERENCES[result.anomaly_type]
            ids.append(self._store_knowledge(
                KnowledgeType.INFERENCE, text, result.anomaly_score * factor, "SituationAnalysis",
            ))

        timestamp = result.timestamp_us or self.clock()
        hour = hour_of_day(timestamp)
        is_night = hour >= 22 or hour < 6
        business_hours = self._is_business_hours(device_id, timestamp)

        if is_night and result.motion_level > 0.1:
            ids.append(self._store_knowledge(
                KnowledgeType.INFERENCE,
                "Significant activity detected during nighttime hours - possible off-hours access",
                0.85, "TimeContextAnalysis",
            ))

        if result.count_objects("person") > 5 and not business_hours:
            ids.append(self._store_knowledge(
                KnowledgeType.INFERENCE,
                "Unusual number of people detected outside business hours",
                0.75, "OccupancyAnalysis",
            ))

        if result.count_objects("vehicle") > 3 and is_night:
            ids.append(self._store_knowledge(
                KnowledgeType.INFERENCE,
                "Multiple vehicles present during nighttime - unusual activity",
                0.8, "VehicleAnalysis",
            ))
        return ids

    # Cognize

    def cognize(self) -> None:
        self.assess_situation()
        self.identify_threats()
        self.update_goals()
        self._enqueue(TaskType.SELECT_ACTIONS, 5)

    def assess_situation(self) -> None:
        recent = self._recent_knowledge(ACTION_SOURCES | {"SituationAssessment"})
        if self.oracle is not None and recent:
            if self._assess_with_oracle(recent):
                return

        start = self.clock()
        max_score = 0.0
        description = ""
        for item in recent:
            content = item.content.lower()
            if "anomaly detected" in content or "threat" in content:
                if item.confidence >= max_score:
                    max_score = item.confidence
                    description = item.content

        if description:
            content = f"Security situation assessment: Potential security issue detected. {description}"
            confidence = max_score * 0.9
        else:
            content = "Security situation assessment: Normal operations, no significant issues detected."
            confidence = 0.9

        output_id = self._store_knowledge(KnowledgeType.INFERENCE, content, confidence, "SituationAssessment")
        self._record_reasoning(Reasoning(
            reasoning_id=generate_id("REAS", start),
            reasoning_type=ReasoningType.SITUATION_ASSESSMENT,
            input_ids=[item.item_id for item in recent],
            output_ids=[output_id],
            trace="Rule-based keyword assessment",
            confidence=confidence,
            start_time_us=start,
            end_time_us=self.clock(),
            is_complete=True,
        ))

    def _knowledge_context(self, items: List[KnowledgeItem]) -> List[ContextItem]:
        return [
            ContextItem(
                item_type=ContextItemType.ENVIRONMENT_INFO,
                description=item.content,
                timestamp_us=item.timestamp_us,
                confidence=item.confidence,
                metadata={"id": item.item_id, "type": item.knowledge_type.value, "source": item.source},
            )
            for item in items
        ]

    def _assess_with_oracle(self, recent: List[KnowledgeItem]) -> bool:
        start = self.clock()
        context = self._knowledge_context(recent)
        context.append(ContextItem(
            item_type=ContextItemType.ENVIRONMENT_INFO,
            description="Query: What is the current security situation?",
            timestamp_us=start,
        ))

        response = self.oracle.request("SYSTEM", RequestType.SITUATION_ASSESSMENT, context)
        reasoning = Reasoning(
            reasoning_id=generate_id("REAS", start),
            reasoning_type=ReasoningType.SITUATION_ASSESSMENT,
            input_ids=[item.item_id for item in recent],
            start_time_us=start,
        )

        if not response.success:
            logger.warning(f"Oracle situation assessment failed, using rules: {response.error_message}")
            reasoning.trace = "Failed to generate reasoning with oracle"
            reasoning.confidence = 0.2
            reasoning.end_time_us = self.clock()
            reasoning.is_complete = True
            self._record_reasoning(reasoning)
            return False

        sentences = [s.strip() for s in SENTENCE_PATTERN.findall(response.reasoning)]
        insights = [s for s in sentences if len(s) > 10][:MAX_ORACLE_INSIGHTS]
        reasoning.output_ids = [
            self._store_knowledge(
                KnowledgeType.INFERENCE, insight, response.confidence_score * 0.9,
                "SituationAssessment", related_ids=reasoning.input_ids,
            )
            for insight in insights
        ]
        reasoning.trace = response.reasoning
        reasoning.confidence = response.confidence_score
        reasoning.end_time_us = self.clock()
        reasoning.is_complete = True
        self._record_reasoning(reasoning)
        return True

    def identify_threats(self) -> float:
        """Scan recent knowledge for threat indicators; returns the max threat score."""
        max_threat = 0.0
        description = ""
        for item in self._recent_knowledge(ACTION_SOURCES | {"ThreatAnalysis"}):
            content = item.content.lower()
            if any(indicator in content for indicator in THREAT_INDICATORS):
                score = item.confidence * 0.8
                if score > max_threat:
                    max_threat = score
                    description = item.content

        if max_threat > THREAT_REPORT_THRESHOLD:
            self._store_knowledge(
                KnowledgeType.INFERENCE,
                f"Threat assessment: Potential security threat identified. {description}",
                max_threat, "ThreatAnalysis",
            )
        return max_threat

    def _linked_action_progress(self, goal_id: str) -> Tuple[int, int]:
        with self._action_lock:
            linked = [a for a in self.actions.values() if a.goal_id == goal_id]
        return len(linked), sum(1 for a in linked if a.is_finished())

    def update_goals(self) -> None:
        """Open VERIFY/RESPOND goals for current concerns and refresh goal progress."""
        has_threat = False
        has_anomaly = False
        max_score = 0.0
        for item in self._recent_knowledge():
            content = item.content.lower()
            if "threat" in content:
                has_threat = True
                max_score = max(max_score, item.confidence)
            elif "anomaly" in content:
                has_anomaly = True
                max_score = max(max_score, item.confidence)

        if has_threat or has_anomaly:
            active_types = {goal.goal_type for goal in self.get_active_goals()}
            if GoalType.VERIFY not in active_types:
                self._new_goal(GoalType.VERIFY, "Investigate potential security concern", GoalPriority.HIGH)
            if GoalType.RESPOND not in active_types and max_score > RESPOND_THRESHOLD:
                self._new_goal(GoalType.RESPOND, "Respond to identified security threat", GoalPriority.CRITICAL)

        self._expire_overdue_goals()

        with self._goal_lock:
            tracked = [(g.goal_id, g.goal_type) for g in self.goals.values() if not g.is_completed()]

        for goal_id, goal_type in tracked:
            if goal_type == GoalType.DETECT:
                if has_anomaly:
                    self._finish_goal(goal_id, 1.0, "Detection successful")
            elif goal_type in (GoalType.VERIFY, GoalType.RESPOND):
                total, finished = self._linked_action_progress(goal_id)
                if total == 0:
                    continue
                result = "Verification complete" if goal_type == GoalType.VERIFY else "Response complete"
                self._finish_goal(goal_id, finished / total, result if finished == total else "")

    def _expire_overdue_goals(self) -> None:
        now = self.clock()
        with self._goal_lock:
            for goal in self.goals.values():
                if goal.is_active() and not goal.is_achievable_by_deadline(now):
                    goal.status = GoalStatus.FAILED
                    goal.result = "Deadline passed"
                    goal.completion_time_us = now
                    logger.warning(f"Goal {goal.goal_id} missed its deadline: {goal.description}")

    def _finish_goal(self, goal_id: str, progress: float, result: str) -> None:
        with self._goal_lock:
            goal = self.goals.get(goal_id)
            if goal is None:
                return
            goal.progress = progress
            if result:
                goal.status = GoalStatus.ACHIEVED
                goal.result = result
                goal.completion_time_us = self.clock()
                logger.info(f"Goal {goal_id} achieved: {result}")

    # Act

    def act(self) -> List[str]:
        """Plan actions for the top goal and queue them by descending priority."""
        planned = self.plan_actions()
        actions = [self.get_action(action_id) for action_id in planned]
        actions = sorted((a for a in actions if a is not None), key=lambda a: a.priority, reverse=True)
        for action in actions:
            self._enqueue(TaskType.EXECUTE_ACTION, int(action.priority * 10), {"action_id": action.action_id})
        return [a.action_id for a in actions]

    def plan_actions(self) -> List[str]:
        goals = self.get_active_goals()
        if not goals:
            return []
        goal = goals[0]

        # A goal with work still outstanding is not planned again
        if any(a.goal_id == goal.goal_id for a in self.get_ongoing_actions()):
            return []

        start = self.clock()
        planned = self._plan_with_oracle(goal) if self.oracle is not None else []
        if not planned:
            planned = [
                self._new_action(action_type, self._default_description(goal, action_type, description),
                                 priority, goal.goal_id, parameters)
                for action_type, description, priority, parameters in DEFAULT_GOAL_ACTIONS.get(
                    goal.goal_type, [(ActionType.LOG_INFORMATION, "", 0.5, {})])
            ]

        with self._goal_lock:
            stored = self.goals.get(goal.goal_id)
            if stored is not None and stored.status == GoalStatus.PENDING:
                stored.status = GoalStatus.IN_PROGRESS

        self._record_reasoning(Reasoning(
            reasoning_id=generate_id("REAS", start),
            reasoning_type=ReasoningType.PLANNING,
            input_ids=[goal.goal_id],
            output_ids=list(planned),
            trace=f"Planned {len(planned)} actions for goal: {goal.description}",
            confidence=0.9,
            start_time_us=start,
            end_time_us=self.clock(),
            is_complete=True,
        ))
        return planned

    @staticmethod
    def _default_description(goal: Goal, action_type: ActionType, description: str) -> str:
        if action_type == ActionType.LOG_INFORMATION and not description:
            return f"Log goal progress: {goal.description}"
        return description

    def _plan_with_oracle(self, goal: Goal) -> List[str]:
        context = [ContextItem(
            item_type=ContextItemType.ENVIRONMENT_INFO,
            description=f"Goal: {goal.description}",
            timestamp_us=goal.creation_time_us,
            metadata={"goalId": goal.goal_id, "type": goal.goal_type.value, "priority": goal.priority.name},
        )]
        context.extend(self._knowledge_context(self._recent_knowledge()))

        response = self.oracle.request("SYSTEM", RequestType.RESPONSE_PLANNING, context)
        if not response.success:
            logger.warning(f"Oracle planning failed for goal {goal.goal_id}: {response.error_message}")
            return []

        return [
            self._new_action(
                ORACLE_ACTION_TYPES.get(recommended.action_type, ActionType.LOG_INFORMATION),
                recommended.description,
                recommended.confidence,
                goal.goal_id,
                recommended.parameters,
                expected_utility=recommended.confidence,
            )
            for recommended in response.actions
        ]

    # Execute

    def execute_action(self, action_id: str) -> bool:
        with self._action_lock:
            action = self.actions.get(action_id)
            if action is None or action.status != ActionStatus.PENDING:
                return False
            action.status = ActionStatus.IN_PROGRESS
            snapshot = copy.deepcopy(action)

        logger.info(f"Executing action: {snapshot.description}")
        try:
            success, result = self._dispatch_action(snapshot)
        except Exception as e:
            logger.error(f"Action {action_id} raised: {e}")
            success, result = False, f"Action execution failed: {e}"

        with self._action_lock:
            action = self.actions.get(action_id)
            if action is not None:
                action.status = ActionStatus.COMPLETED if success else ActionStatus.FAILED
                action.result = result or ("" if success else "Action execution failed")
                action.completion_time_us = self.clock()
        return success

    def _dispatch_action(self, action: Action) -> Tuple[bool, str]:
        handlers = {
            ActionType.FOCUS_CAMERA: self._focus_camera,
            ActionType.ADJUST_ANALYSIS: self._adjust_analysis,
            ActionType.GENERATE_ALERT: self._generate_alert,
            ActionType.SUPPRESS_ALERT: self._suppress_alert,
            ActionType.GATHER_CONTEXT: self._gather_context,
            ActionType.VERIFY_ANOMALY: self._verify_anomaly,
            ActionType.CORRELATE_EVENTS: self._correlate_events,
            ActionType.INITIATE_RESPONSE: self._initiate_response,
            ActionType.TRACK_SUBJECT: self._track_subject,
            ActionType.COORDINATE_SYSTEM: self._coordinate_system,
            ActionType.UPDATE_MODEL: self._update_model,
            ActionType.LOG_INFORMATION: self._log_information,
            ActionType.REQUEST_ASSISTANCE: self._request_assistance,
        }
        handler = handlers.get(action.action_type)
        if handler is None:
            logger.warning(f"Unknown action type: {action.action_type}")
            return False, f"Unknown action type: {action.action_type}"
        return handler(action)

    def _focus_camera(self, action: Action) -> Tuple[bool, str]:
        camera_id = self.strategy_manager.get_recommended_camera() if self.strategy_manager else ""
        result = f"Focused monitoring on camera: {camera_id or 'all cameras'}"
        logger.info(result)
        return True, result

    def _adjust_analysis(self, action: Action) -> Tuple[bool, str]:
        self._store_knowledge(KnowledgeType.META_KNOWLEDGE,
                              "Adjusted analysis parameters for optimized detection", 0.9, "ActionExecution")
        return True, "Analysis parameters adjusted"

    def _generate_alert(self, action: Action) -> Tuple[bool, str]:
        priority = action.parameters.get("priority", "medium")
        source = self.query_knowledge("threat", 3) or self.query_knowledge("anomaly", 3)
        detail = source[0].content if source else "Potential security concern detected. Please verify."
        message = f"SECURITY ALERT ({priority}): {detail}"

        logger.warning(f"Generated alert: {message}")
        self._store_knowledge(KnowledgeType.OBSERVATION, f"Security alert generated: {message}",
                              0.95, "ActionExecution")
        return True, f"Alert generated: {message}"

    def _suppress_alert(self, action: Action) -> Tuple[bool, str]:
        logger.info("Suppressed alert to prevent false alarm")
        self._store_knowledge(KnowledgeType.META_KNOWLEDGE, "Suppressed potential false alarm",
                              0.8, "ActionExecution")
        return True, "Alert suppressed"

    def _gather_context(self, action: Action) -> Tuple[bool, str]:
        if self.strategy_manager is None:
            self._store_knowledge(KnowledgeType.CONTEXTUAL_INFO, "Unable to gather additional context",
                                  0.5, "ContextGathering")
            return False, "No strategy manager available for context"

        report = self.strategy_manager.generate_situation_report()
        self._store_knowledge(KnowledgeType.CONTEXTUAL_INFO, f"Situation context: {report}",
                              0.85, "ContextGathering")
        return True, "Gathered additional context"

    def _verify_anomaly(self, action: Action) -> Tuple[bool, str]:
        anomalies = [item for item in self.query_knowledge("anomaly", 5) if item.source not in ACTION_SOURCES]
        if not anomalies:
            logger.warning("No anomalies found to verify")
            return False, "No anomalies found to verify"

        if any(item.confidence > 0.8 for item in anomalies):
            self._store_knowledge(KnowledgeType.INFERENCE,
                                  "Anomaly verification: The detected anomaly has been confirmed as genuine",
                                  0.9, "AnomalyVerification")
            return True, "Anomaly verified as genuine"

        self._store_knowledge(KnowledgeType.INFERENCE,
                              "Anomaly verification: Unable to confirm the anomaly with high confidence",
                              0.7, "AnomalyVerification")
        return True, "Unable to verify anomaly with high confidence"

    def _correlate_events(self, action: Action) -> Tuple[bool, str]:
        self._store_knowledge(KnowledgeType.INFERENCE, "Event correlation analysis completed",
                              0.7, "EventCorrelation")
        return True, "Event correlation completed"

    def _initiate_response(self, action: Action) -> Tuple[bool, str]:
        if self.strategy_manager is None:
            logger.warning("Failed to initiate response protocol: no strategy manager")
            return False, "No strategy manager available"

        threats = self.query_knowledge("threat", 3)
        description = threats[0].content if threats else "Automated response to security concern"
        severity = IncidentSeverity.HIGH if threats and threats[0].confidence > 0.8 else IncidentSeverity.MEDIUM
        camera_id = action.parameters.get("cameraId", "")

        incident_id = self.strategy_manager.create_incident(
            IncidentType.SUSPICIOUS_BEHAVIOR, severity, description, camera_id)
        if not incident_id:
            return False, "Incident creation failed"

        logger.info(f"Created incident: {incident_id}")
        return True, f"Initiated response protocol - Incident ID: {incident_id}"

    def _track_subject(self, action: Action) -> Tuple[bool, str]:
        subjects = self.strategy_manager.get_tracked_subjects() if self.strategy_manager else []
        if not subjects:
            logger.warning("No subjects available for tracking")
            return False, "No subjects available for tracking"

        subject = subjects[0]
        self._store_knowledge(KnowledgeType.OBSERVATION, f"Actively tracking subject with ID {subject.subject_id}",
                              0.9, "SubjectTracking")
        return True, f"Tracking subject: {subject.subject_id}"

    def _coordinate_system(self, action: Action) -> Tuple[bool, str]:
        logger.info("Coordinating with external systems")
        self._store_knowledge(KnowledgeType.OBSERVATION, "Coordinated response with external systems",
                              0.8, "SystemCoordination")
        return True, "Coordinated with external systems"

    def _update_model(self, action: Action) -> Tuple[bool, str]:
        logger.info("Updating internal models based on recent events")
        self._store_knowledge(KnowledgeType.META_KNOWLEDGE, "Updated internal models for improved detection",
                              0.85, "ModelUpdate")
        return True, "Internal models updated"

    def _log_information(self, action: Action) -> Tuple[bool, str]:
        message = f"System log: {action.parameters.get('message', action.description)}"
        logger.info(message)
        return True, f"Information logged: {message}"

    def _request_assistance(self, action: Action) -> Tuple[bool, str]:
        detail = action.parameters.get("message", "Human operator assistance required for security situation")
        message = f"ASSISTANCE REQUIRED: {detail}"
        logger.warning(f"Requesting assistance: {message}")
        self._store_knowledge(KnowledgeType.META_KNOWLEDGE, f"Requested human operator assistance: {message}",
                              0.9, "AssistanceRequest")
        return True, f"Assistance requested: {message}"

    # Reflect

    def reflect(self) -> None:
        """Snapshot goals and actions and, with an oracle, act on its recommendations."""
        now = self.clock()
        with self._goal_lock:
            goals = [asdict(goal) for goal in self.goals.values()]
        with self._action_lock:
            actions = [asdict(action) for action in self.actions.values()]

        with self._state_lock:
            self.recent_states.append(StateSnapshot(timestamp_us=now, goals=goals, actions=actions))
            history = list(self.recent_states)[-MIN_STATES_FOR_REFLECTION:]

        self._next_reflection_us = now + REFLECTION_INTERVAL_US
        if self.oracle is None or len(history) < MIN_STATES_FOR_REFLECTION:
            return

        context = [
            ContextItem(
                item_type=ContextItemType.ENVIRONMENT_INFO,
                description=f"System state {index + 1} of {len(history)}",
                timestamp_us=state.timestamp_us,
                metadata={"goals": len(state.goals), "actions": len(state.actions)},
            )
            for index, state in enumerate(history)
        ]
        context.append(ContextItem(
            item_type=ContextItemType.ENVIRONMENT_INFO,
            description="Please analyze system performance and provide insights and recommendations for improvement.",
            timestamp_us=now,
        ))

        response = self.oracle.request("SYSTEM", RequestType.SITUATION_ASSESSMENT, context)
        if not response.success:
            logger.warning(f"Reflection failed: {response.error_message}")
            return

        sentences = [s.strip() for s in SENTENCE_PATTERN.findall(response.reasoning)]
        insights = [
            s for s in sentences
            if len(s) > 10 and any(indicator in s.lower() for indicator in INSIGHT_INDICATORS)
        ][:MAX_REFLECTION_INSIGHTS]
        for insight in insights:
            self._store_knowledge(KnowledgeType.META_KNOWLEDGE, insight, 0.8, "SystemReflection")

        for recommended in response.actions:
            self.apply_recommendation(recommended.description)

    def apply_recommendation(self, recommendation: str) -> None:
        logger.info(f"Applying recommendation: {recommendation}")
        text = recommendation.lower()
        if "goal" in text and "create" in text:
            self.add_goal(GoalType.OPTIMIZE, f"Optimization goal from reflection: {recommendation}",
                          GoalPriority.MEDIUM)
        elif "model" in text and "update" in text:
            self.create_action(ActionType.UPDATE_MODEL, f"Update models based on reflection: {recommendation}",
                               0.7, parameters={"recommendation": recommendation})

    def get_recent_states(self) -> List[StateSnapshot]:
        with self._state_lock:
            return list(self.recent_states)

    # Housekeeping

    def cleanup_old_data(self) -> None:
        now = self.clock()
        with self._goal_lock:
            stale = [k for k, g in self.goals.items()
                     if g.is_completed() and now - g.completion_time_us > FINISHED_RETENTION_US]
            for key in stale:
                del self.goals[key]

        with self._knowledge_lock:
            stale = [k for k, item in self.knowledge.items() if now - item.timestamp_us > KNOWLEDGE_RETENTION_US]
            for key in stale:
                del self.knowledge[key]

        with self._reasoning_lock:
            stale = [k for k, r in self.reasoning_steps.items()
                     if r.end_time_us and now - r.end_time_us > FINISHED_RETENTION_US]
            for key in stale:
                del self.reasoning_steps[key]

        with self._action_lock:
            stale = [k for k, a in self.actions.items()
                     if a.is_finished() and now - a.completion_time_us > FINISHED_RETENTION_US]
            for key in stale:
                del self.actions[key]

    def generate_cognitive_status(self) -> str:
        goals = self.get_active_goals()
        actions = self.get_ongoing_actions()

        if self.oracle is not None:
            context = [
                ContextItem(
                    item_type=ContextItemType.ENVIRONMENT_INFO,
                    description=f"Goal: {goal.description} (Priority: {goal.priority.name})",
                    timestamp_us=goal.creation_time_us,
                )
                for goal in goals
            ]
            context.extend(
                ContextItem(
                    item_type=ContextItemType.ENVIRONMENT_INFO,
                    description=f"Action: {action.description} (Priority: {action.priority:.2f})",
                    timestamp_us=action.creation_time_us,
                )
                for action in actions
            )
            context.extend(
                ContextItem(
                    item_type=ContextItemType.ENVIRONMENT_INFO,
                    description=f"Knowledge: {item.content}",
                    timestamp_us=item.timestamp_us,
                    confidence=item.confidence,
                )
                for item in self.query_knowledge("", 10)
            )
            response = self.oracle.request("SYSTEM", RequestType.SITUATION_ASSESSMENT, context)
            if response.success:
                return response.reasoning

        lines = [f"Cognitive Status at {format_timestamp(self.clock())}", "",
                 f"Active Goals ({len(goals)}):"]
        lines.extend(f"- {g.description} (Priority: {g.priority.name}, Progress: {g.progress * 100:.0f}%)"
                     for g in goals)
        lines.extend(["", f"Ongoing Actions ({len(actions)}):"])
        lines.extend(f"- {a.description} (Priority: {a.priority:.2f})" for a in actions)
        lines.extend(["", "Recent Knowledge:"])
        lines.extend(f"- {k.content} (Confidence: {k.confidence:.2f})" for k in self.query_knowledge("", 5))
        return "\n".join(lines)
