"""
Core interfaces for the security reasoning agent components.
"""

from .analysis import IObservationAnalyzer
from .anomaly import IAnomalyModel, IAnomalyDetector
from .strategy import IStrategyManager
from .cognition import ICognitiveCore
from .reasoning import IReasoningOracle
from .response import IVerificationGate
from .config import IConfigService

__all__ = [
    # Analysis interfaces
    'IObservationAnalyzer',

    # Anomaly interfaces
    'IAnomalyModel', 'IAnomalyDetector',

    # Strategy interfaces
    'IStrategyManager',

    # Cognition interfaces
    'ICognitiveCore',

    # Oracle interfaces
    'IReasoningOracle',

    # Response interfaces
    'IVerificationGate',

    # Configuration interfaces
    'IConfigService'
]
