"""
Cognitive core interfaces.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models import (
    Action, ActionType, FrameAnalysisResult, Goal, GoalPriority, GoalType,
    KnowledgeItem, KnowledgeType,
)


class ICognitiveCore(ABC):
    """Interface for the goal-directed perceive, cognize, act and reflect loop."""

    @abstractmethod
    def initialize(self) -> bool:
        """Start the worker and create the bootstrap goals."""
        pass

    @abstractmethod
    def shutdown(self) -> None:
        """Stop the worker; no further tasks execute."""
        pass

    @abstractmethod
    def process_analysis_result(self, device_id: str, result: FrameAnalysisResult) -> None:
        """Queue an observation for perception."""
        pass

    @abstractmethod
    def on_verified_anomaly(self, device_id: str, result: FrameAnalysisResult) -> None:
        """Ingest an anomaly confirmed by the verification gate."""
        pass

    @abstractmethod
    def add_goal(self, goal_type: GoalType, description: str,
                 priority: GoalPriority = GoalPriority.MEDIUM,
                 parameters: Optional[Dict[str, Any]] = None, deadline_us: int = 0) -> str:
        """Create a goal and schedule goal evaluation."""
        pass

    @abstractmethod
    def add_knowledge(self, knowledge_type: KnowledgeType, content: str, confidence: float,
                      source: str = "", metadata: Optional[Dict[str, Any]] = None) -> str:
        """Store a knowledge item and schedule a knowledge update."""
        pass

    @abstractmethod
    def create_action(self, action_type: ActionType, description: str, priority: float = 0.5,
                      goal_id: str = "", parameters: Optional[Dict[str, Any]] = None) -> str:
        """Create an action and schedule its execution."""
        pass

    @abstractmethod
    def query_knowledge(self, query: str, max_results: int = 10) -> List[KnowledgeItem]:
        """Search knowledge by case-insensitive substring."""
        pass

    @abstractmethod
    def get_active_goals(self) -> List[Goal]:
        """Pending or in-progress goals, most urgent first."""
        pass

    @abstractmethod
    def get_ongoing_actions(self) -> List[Action]:
        """Pending or in-progress actions, highest priority first."""
        pass

    @abstractmethod
    def execute_cognitive_cycle(self) -> None:
        """Schedule a reflection pass."""
        pass

    @abstractmethod
    def generate_cognitive_status(self) -> str:
        """Human readable status summary."""
        pass
