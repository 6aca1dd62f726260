"""
Per-camera pipeline wiring analysis, anomaly detection, verification,
strategy and cognition together.
"""

import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger

from shared.interfaces.cognition import ICognitiveCore
from shared.interfaces.reasoning import IReasoningOracle
from shared.interfaces.strategy import IStrategyManager
from shared.models import (
    DetectedObject, DeviceConfig, FrameAnalysisResult, KnowledgeType, OracleRequest,
    RequestPriority, RequestType,
)
from shared.time_utils import MICROS_PER_HOUR, now_us

from edge.src.anomaly_engine import AnomalyDetector
from edge.src.config_service import ConfigService
from edge.src.context_manager import ContextManager
from edge.src.observation_analyzer import ObservationAnalyzer
from edge.src.verification_gate import VerificationGate


LEARNING_SAMPLE_EVERY = 5
LEARNING_FRAME_COUNT = 1000
DETECTION_SAMPLE_EVERY = 20
MODEL_SAVE_EVERY = 500

CONTEXT_WINDOW = 20
CONTEXT_RETENTION_US = MICROS_PER_HOUR
CONTEXT_PRUNE_EVERY = 100

EVENT_UNKNOWN_VISITOR = "nx.agent.unknownVisitor"
EVENT_ABNORMAL_ACTIVITY = "nx.agent.abnormalActivity"
EVENT_ANOMALY_DETECTED = "nx.agent.anomalyDetected"
EVENT_STATUS = "nx.agent.statusEvent"

EVENT_TYPES = {
    "UnknownVisitor": (EVENT_UNKNOWN_VISITOR, "Unknown Visitor Detected"),
    "AbnormalActivity": (EVENT_ABNORMAL_ACTIVITY, "Abnormal Activity Detected"),
}


@dataclass
class AgentEvent:
    """Event raised towards the host for verified anomalies and status changes."""
    event_type_id: str
    device_id: str
    caption: str
    description: str
    timestamp_us: int
    attributes: Dict[str, str] = field(default_factory=dict)


class DeviceAgent:
    """
    Processes observations for one camera.

    Starts in learning mode unless a persisted model could be loaded.
    """

    def __init__(self, device_id: str, config_service: ConfigService,
                 strategy_manager: Optional[IStrategyManager] = None,
                 cognitive_core: Optional[ICognitiveCore] = None,
                 oracle: Optional[IReasoningOracle] = None,
                 storage_path: Optional[str] = None,
                 clock: Callable[[], int] = now_us):
        """
        Initialize device agent.

        Args:
            device_id: Camera identifier
            config_service: Shared configuration service
            strategy_manager: Optional shared strategy manager
            cognitive_core: Optional shared cognitive core
            oracle: Optional reasoning oracle for verified anomaly analysis
            storage_path: Model storage root, defaults to dataStoragePath
            clock: Microsecond clock, injectable for tests
        """
        self.device_id = device_id
        self.config_service = config_service
        self.strategy_manager = strategy_manager
        self.cognitive_core = cognitive_core
        self.oracle = oracle
        self.clock = clock

        config = config_service.get_device_config(device_id)
        self.config = config
        self.context = ContextManager(device_id)
        self.analyzer = ObservationAnalyzer(config)
        self.detector = AnomalyDetector(device_id, config_service, storage_path)
        self.gate = VerificationGate(device_id, config_service.get_global_config(), clock)
        self.gate.set_event_callback(self._on_verified_anomaly)

        self.event_callback: Optional[Callable[[AgentEvent], None]] = None
        self.object_callback: Optional[Callable[[str, FrameAnalysisResult], None]] = None

        self.learning_mode = not self.detector.load_model()
        self.learning_frame_count = 0
        self.processed_frame_count = 0
        self.anomaly_count = 0
        self._last_reasoning_us = 0
        self._lock = threading.Lock()

        config_service.subscribe(self._on_config_changed)
        logger.info(f"Device agent {device_id} ready in {'learning' if self.learning_mode else 'monitoring'} mode")

    def set_event_callback(self, callback: Callable[[AgentEvent], None]) -> None:
        self.event_callback = callback
        self._emit_status("NX Agent Initialized",
                          f"NX Agent has been initialized and is {'learning' if self.learning_mode else 'monitoring'}",
                          "Initialization")

    def set_object_callback(self, callback: Callable[[str, FrameAnalysisResult], None]) -> None:
        self.object_callback = callback

    def _on_config_changed(self, device_id: str, config: DeviceConfig) -> None:
        if device_id != self.device_id:
            return
        self.config = config
        self.analyzer.configure(config)
        self.detector.configure(config)
        logger.info(f"Device agent {device_id} picked up new configuration")

    def process_frame(self, objects: List[DetectedObject], motion_level: float, timestamp_us: int,
                      motion_regions: Optional[List[Tuple[float, float]]] = None) -> FrameAnalysisResult:
        """Analyze one frame's detections and motion and run it through the pipeline."""
        result = self.analyzer.analyze(objects, motion_level, timestamp_us, motion_regions)
        self._process(result)
        return result

    def process_metadata(self, objects: List[DetectedObject], timestamp_us: int) -> FrameAnalysisResult:
        """Run an object-only metadata tick through the pipeline."""
        result = self.analyzer.process_metadata(objects, timestamp_us)
        self._process(result)
        return result

    def _process(self, result: FrameAnalysisResult) -> None:
        with self._lock:
            self.processed_frame_count += 1

        try:
            self._report_objects(result)
            if self.learning_mode and self.config.enable_learning:
                self._learn(result)
            else:
                self._detect(result)
            self._record_context(result)

            verified = self.gate.process_anomaly(result) if result.is_anomaly else False
            if verified:
                with self._lock:
                    self.anomaly_count += 1

            self._update_strategy(result, verified)
            self._forward_to_cognition(result)
        except Exception as e:
            logger.error(f"Processing error on {self.device_id}: {e}")

    def _learn(self, result: FrameAnalysisResult) -> None:
        if self.learning_frame_count % LEARNING_SAMPLE_EVERY == 0:
            self.detector.add_to_baseline(result)
        self.learning_frame_count += 1

        if self.learning_frame_count % 100 == 0:
            logger.info(f"Learning progress on {self.device_id}: {self.learning_frame_count} frames collected")

        if self.learning_frame_count >= LEARNING_FRAME_COUNT:
            self.learning_mode = False
            self.detector.save_model()
            logger.info(f"{self.device_id} switching from learning to detection mode")
            self._emit_status("Learning Complete",
                              "NX Agent has completed learning and is now in monitoring mode", "ModeChange")

    def _detect(self, result: FrameAnalysisResult) -> None:
        self.detector.detect_anomaly(result)

        if self.config.enable_learning and self.learning_frame_count % DETECTION_SAMPLE_EVERY == 0:
            if not result.is_anomaly:
                self.detector.add_to_baseline(result)
        self.learning_frame_count += 1

        if self.config.enable_learning and self.learning_frame_count % MODEL_SAVE_EVERY == 0:
            self.detector.save_model()

    def _record_context(self, result: FrameAnalysisResult) -> None:
        if result.objects or result.is_anomaly or result.motion_level > 0.0:
            self.context.add_analysis_result(result)

        if self.processed_frame_count % CONTEXT_PRUNE_EVERY == 0:
            removed = self.context.clear_old_context(result.timestamp_us - CONTEXT_RETENTION_US)
            if removed:
                logger.debug(f"Pruned {removed} context items on {self.device_id}")

    def _update_strategy(self, result: FrameAnalysisResult, verified: bool) -> None:
        if self.strategy_manager is None:
            return
        # Incidents are opened for verified anomalies only
        if verified or not result.is_anomaly:
            self.strategy_manager.process_analysis_result(self.device_id, result)
        else:
            for obj in result.objects:
                self.strategy_manager.update_tracked_subject(self.device_id, obj, result.timestamp_us)

    def _forward_to_cognition(self, result: FrameAnalysisResult) -> None:
        if self.cognitive_core is None:
            return
        interval_us = self.config.reasoning_interval * 1_000_000
        if result.timestamp_us - self._last_reasoning_us >= interval_us:
            self._last_reasoning_us = result.timestamp_us
            self.cognitive_core.process_analysis_result(self.device_id, result)

    def _report_objects(self, result: FrameAnalysisResult) -> None:
        if result.objects and self.object_callback is not None:
            self.object_callback(self.device_id, result)

    def _on_verified_anomaly(self, result: FrameAnalysisResult) -> None:
        event_type_id, caption = EVENT_TYPES.get(result.anomaly_type, (EVENT_ANOMALY_DETECTED, "Anomaly Detected"))
        event = AgentEvent(
            event_type_id=event_type_id,
            device_id=self.device_id,
            caption=caption,
            description=result.anomaly_description or "Unusual activity detected by AI Security Guard",
            timestamp_us=result.timestamp_us,
            attributes={"anomalyType": result.anomaly_type, "anomalyScore": f"{result.anomaly_score:.3f}"},
        )
        logger.info(f"Generated anomaly event {event_type_id} on {self.device_id} "
                    f"with score {result.anomaly_score:.2f}")
        self._emit(event)

        if self.cognitive_core is not None:
            self.cognitive_core.on_verified_anomaly(self.device_id, result)

        self._request_analysis()

    def _request_analysis(self) -> None:
        """Ask the oracle about the verified anomaly without blocking the frame path."""
        if self.oracle is None or not self.config.enable_ai_reasoning:
            return

        request = OracleRequest(
            device_id=self.device_id,
            request_type=RequestType.ANOMALY_ANALYSIS,
            request_time_us=self.clock(),
            priority=RequestPriority.HIGH,
            context_items=self.context.get_recent_context(CONTEXT_WINDOW),
        )
        self.oracle.submit(request).add_done_callback(self._on_analysis)

    def _on_analysis(self, future: Future) -> None:
        try:
            response = future.result()
            if not response.success:
                logger.warning(f"Anomaly analysis failed on {self.device_id}: {response.error_message}")
                return
            if response.confidence_score < self.config.reasoning_confidence_threshold:
                logger.debug(f"Ignoring low confidence analysis on {self.device_id} "
                             f"({response.confidence_score:.2f})")
                return

            logger.info(f"AI analysis for {self.device_id}: {response.reasoning}")
            if self.cognitive_core is not None:
                self.cognitive_core.add_knowledge(
                    KnowledgeType.INFERENCE,
                    f"AI anomaly analysis on camera {self.device_id}: {response.reasoning}",
                    response.confidence_score,
                    "AnomalyAnalysis",
                    {"deviceId": self.device_id},
                )
        except Exception as e:
            logger.error(f"Error handling anomaly analysis on {self.device_id}: {e}")

    def _emit_status(self, caption: str, description: str, status_type: str) -> None:
        self._emit(AgentEvent(
            event_type_id=EVENT_STATUS,
            device_id=self.device_id,
            caption=caption,
            description=description,
            timestamp_us=self.clock(),
            attributes={"statusType": status_type,
                        "message": "Learning mode active" if self.learning_mode else "Monitoring mode active"},
        ))

    def _emit(self, event: AgentEvent) -> None:
        if self.event_callback is None:
            return
        try:
            self.event_callback(event)
        except Exception as e:
            logger.error(f"Event callback failed on {self.device_id}: {e}")

    def get_status(self) -> Dict[str, object]:
        return {
            "deviceId": self.device_id,
            "mode": "learning" if self.learning_mode else "monitoring",
            "processedFrames": self.processed_frame_count,
            "learningFrames": self.learning_frame_count,
            "anomalies": self.anomaly_count,
            "anomalyThreshold": self.detector.get_threshold(),
        }

    def shutdown(self) -> None:
        if not self.detector.save_model():
            logger.warning(f"Some models for {self.device_id} could not be saved on shutdown")
        self.gate.reset()
