"""
Data models for the security reasoning agent.
"""

from .observation import BoundingBox, DetectedObject, MotionInfo, FrameAnalysisResult
from .features import FeatureVector, stack_features
from .tracking import (
    CameraPosition, CameraInfo, PositionRecord, TrackedSubject,
    IncidentType, IncidentSeverity, IncidentStatus, IncidentAction, SecurityIncident,
    MonitoringStrategyType, MonitoringStrategy, PlanStatus, PlanAction, StrategicPlan,
)
from .cognition import (
    KnowledgeType, KnowledgeItem, GoalType, GoalPriority, GoalStatus, Goal,
    ReasoningType, Reasoning, ActionType, ActionStatus, Action,
    TaskType, Task, StateSnapshot,
)
from .reasoning import (
    ContextItemType, ContextItem, RequestType, RequestPriority, OracleRequest,
    OracleActionType, RecommendedAction, OracleResponse,
)
from .config import TimeRange, RegionPoint, DetectionRegion, DeviceConfig, GlobalConfig, AgentConfigDocument

__all__ = [
    # Observation models
    'BoundingBox', 'DetectedObject', 'MotionInfo', 'FrameAnalysisResult',

    # Feature models
    'FeatureVector', 'stack_features',

    # Tracking, incident and plan models
    'CameraPosition', 'CameraInfo', 'PositionRecord', 'TrackedSubject',
    'IncidentType', 'IncidentSeverity', 'IncidentStatus', 'IncidentAction', 'SecurityIncident',
    'MonitoringStrategyType', 'MonitoringStrategy', 'PlanStatus', 'PlanAction', 'StrategicPlan',

    # Cognition models
    'KnowledgeType', 'KnowledgeItem', 'GoalType', 'GoalPriority', 'GoalStatus', 'Goal',
    'ReasoningType', 'Reasoning', 'ActionType', 'ActionStatus', 'Action',
    'TaskType', 'Task', 'StateSnapshot',

    # Oracle contracts
    'ContextItemType', 'ContextItem', 'RequestType', 'RequestPriority', 'OracleRequest',
    'OracleActionType', 'RecommendedAction', 'OracleResponse',

    # Configuration
    'TimeRange', 'RegionPoint', 'DetectionRegion', 'DeviceConfig', 'GlobalConfig', 'AgentConfigDocument',
]
