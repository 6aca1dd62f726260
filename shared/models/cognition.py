"""
Goal, knowledge, reasoning and action models for the cognitive core.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


MICROS_PER_SECOND = 1_000_000

# Default validity horizon of a knowledge item
KNOWLEDGE_VALIDITY_US = 60 * MICROS_PER_SECOND


class KnowledgeType(str, Enum):
    OBSERVATION = "observation"
    INFERENCE = "inference"
    PREDICTION = "prediction"
    HISTORICAL_FACT = "historical_fact"
    CONTEXTUAL_INFO = "contextual_info"
    META_KNOWLEDGE = "meta_knowledge"


@dataclass
class KnowledgeItem:
    """Typed, timestamped and confidence-scored fact or inference."""
    item_id: str
    knowledge_type: KnowledgeType
    content: str
    confidence: float
    timestamp_us: int
    source: str = ""
    related_ids: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def is_valid(self, now_us: int, validity_us: int = KNOWLEDGE_VALIDITY_US) -> bool:
        return now_us - self.timestamp_us <= validity_us


class GoalType(str, Enum):
    MONITOR = "monitor"
    DETECT = "detect"
    TRACK = "track"
    VERIFY = "verify"
    RESPOND = "respond"
    PREVENT = "prevent"
    OPTIMIZE = "optimize"


class GoalPriority(int, Enum):
    """Goal priority, lower value is more urgent."""
    CRITICAL = 0
    HIGH = 1
    MEDIUM = 2
    LOW = 3
    BACKGROUND = 4


class GoalStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    ACHIEVED = "achieved"
    FAILED = "failed"
    ABANDONED = "abandoned"


@dataclass
class Goal:
    """Objective pursued by the cognitive core."""
    goal_id: str
    goal_type: GoalType
    description: str
    priority: GoalPriority = GoalPriority.MEDIUM
    status: GoalStatus = GoalStatus.PENDING
    progress: float = 0.0
    creation_time_us: int = 0
    deadline_us: int = 0
    parent_goal_id: str = ""
    child_goal_ids: List[str] = field(default_factory=list)
    dependency_ids: List[str] = field(default_factory=list)
    result: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)
    completion_time_us: int = 0

    def is_active(self) -> bool:
        return self.status in (GoalStatus.PENDING, GoalStatus.IN_PROGRESS)

    def is_completed(self) -> bool:
        return self.status in (GoalStatus.ACHIEVED, GoalStatus.FAILED, GoalStatus.ABANDONED)

    def is_achievable_by_deadline(self, now_us: int) -> bool:
        """Goals without a deadline are always achievable."""
        if not self.deadline_us:
            return True
        return now_us < self.deadline_us


class ReasoningType(str, Enum):
    PERCEPTION = "perception"
    SITUATION_ASSESSMENT = "situation_assessment"
    PLANNING = "planning"
    DECISION_MAKING = "decision_making"
    SELF_REFLECTION = "self_reflection"
    META_COGNITIVE = "meta_cognitive"


@dataclass
class Reasoning:
    """One reasoning step, rule based or produced by the oracle."""
    reasoning_id: str
    reasoning_type: ReasoningType
    input_ids: List[str] = field(default_factory=list)
    output_ids: List[str] = field(default_factory=list)
    trace: str = ""
    confidence: float = 0.0
    start_time_us: int = 0
    end_time_us: int = 0
    is_complete: bool = False


class ActionType(str, Enum):
    FOCUS_CAMERA = "focus_camera"
    ADJUST_ANALYSIS = "adjust_analysis"
    GENERATE_ALERT = "generate_alert"
    SUPPRESS_ALERT = "suppress_alert"
    GATHER_CONTEXT = "gather_context"
    VERIFY_ANOMALY = "verify_anomaly"
    CORRELATE_EVENTS = "correlate_events"
    INITIATE_RESPONSE = "initiate_response"
    TRACK_SUBJECT = "track_subject"
    COORDINATE_SYSTEM = "coordinate_system"
    UPDATE_MODEL = "update_model"
    LOG_INFORMATION = "log_information"
    REQUEST_ASSISTANCE = "request_assistance"


class ActionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class Action:
    """Action selected to advance a goal."""
    action_id: str
    action_type: ActionType
    description: str
    priority: float = 0.5
    status: ActionStatus = ActionStatus.PENDING
    goal_id: str = ""
    expected_utility: float = 0.5
    creation_time_us: int = 0
    completion_time_us: int = 0
    result: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)

    def is_finished(self) -> bool:
        return self.status in (ActionStatus.COMPLETED, ActionStatus.FAILED, ActionStatus.CANCELLED)


class TaskType(str, Enum):
    PROCESS_ANALYSIS = "process_analysis"
    UPDATE_KNOWLEDGE = "update_knowledge"
    EVALUATE_GOALS = "evaluate_goals"
    SELECT_ACTIONS = "select_actions"
    EXECUTE_ACTION = "execute_action"
    REFLECT = "reflect"


@dataclass
class Task:
    """
    Unit of work for the cognitive worker.

    Priority is recorded for diagnostics; the queue itself is FIFO.
    """
    task_type: TaskType
    priority: int = 0
    payload: Dict[str, Any] = field(default_factory=dict)
    enqueue_time_us: int = 0


@dataclass
class StateSnapshot:
    """Point-in-time summary kept for self reflection."""
    timestamp_us: int
    goals: List[Dict[str, Any]] = field(default_factory=list)
    actions: List[Dict[str, Any]] = field(default_factory=list)
