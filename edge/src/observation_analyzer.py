"""
Rule-based observation analyzer.

Turns detector output (objects plus a motion summary) into a
FrameAnalysisResult with a heuristic anomaly score and labelled anomaly
types for unknown visitors and abnormal activity.
"""

from typing import Dict, List, Optional, Tuple

from loguru import logger

from shared.interfaces.analysis import IObservationAnalyzer
from shared.models import DetectedObject, DeviceConfig, FrameAnalysisResult, MotionInfo
from shared.time_utils import MICROS_PER_SECOND, time_of_day_seconds


UNKNOWN_VISITOR = ("UnknownVisitor", "Unknown visitor detected for extended period")
ABNORMAL_ACTIVITY = ("AbnormalActivity", "Unusual activity pattern detected")
GENERAL_ANOMALY = ("GeneralAnomaly", "General unusual activity detected")
METADATA_ANOMALY = ("GeneralAnomaly", "Unusual metadata patterns detected")

ACTIVITY_MOTION_LEVEL = 0.2
SCENE_MOTION_LEVEL = 0.05
RESTRICTED_PERSON_COUNT = 2


class ObservationAnalyzer(IObservationAnalyzer):
    """
    Per-camera analyzer producing observations from detections.

    Unknown visitors are timed by track id using observation timestamps,
    so replayed or simulated feeds behave the same as live ones.
    """

    def __init__(self, config: DeviceConfig):
        """
        Initialize observation analyzer.

        Args:
            config: Device configuration snapshot
        """
        self.device_id = config.device_id
        self.config = config
        self.motion_threshold = self._motion_threshold_for(config)
        self._unknown_visitor_tracks: Dict[str, int] = {}

    @staticmethod
    def _motion_threshold_for(config: DeviceConfig) -> float:
        return 0.01 + (1.0 - config.anomaly_threshold) * 0.1

    def configure(self, config: DeviceConfig) -> None:
        """Apply a new configuration snapshot."""
        self.config = config
        self.motion_threshold = self._motion_threshold_for(config)
        logger.debug(f"Analyzer for {self.device_id} reconfigured, motion threshold {self.motion_threshold:.3f}")

    def analyze(self, objects: List[DetectedObject], motion_level: float, timestamp_us: int,
                motion_regions: Optional[List[Tuple[float, float]]] = None) -> FrameAnalysisResult:
        result = FrameAnalysisResult(
            timestamp_us=timestamp_us,
            objects=self._filter_objects(objects),
            motion=MotionInfo(overall_motion_level=motion_level, motion_regions=list(motion_regions or [])),
        )

        result.anomaly_score = self.calculate_anomaly_score(result)
        result.raise_anomaly_score(min(result.anomaly_score + self.analyze_scene_activity(result), 1.0))

        unknown_visitor = self.detect_unknown_visitors(result)
        abnormal_activity = self.detect_anomalous_activity(result)
        above_threshold = result.anomaly_score > self.config.anomaly_threshold

        result.is_anomaly = unknown_visitor or abnormal_activity or above_threshold
        if unknown_visitor:
            result.anomaly_type, result.anomaly_description = UNKNOWN_VISITOR
        elif abnormal_activity:
            result.anomaly_type, result.anomaly_description = ABNORMAL_ACTIVITY
        elif above_threshold:
            result.anomaly_type, result.anomaly_description = GENERAL_ANOMALY

        if result.is_anomaly:
            logger.debug(f"Frame anomaly on {self.device_id}: {result.anomaly_type} ({result.anomaly_score:.2f})")
        return result

    def process_metadata(self, objects: List[DetectedObject], timestamp_us: int) -> FrameAnalysisResult:
        result = FrameAnalysisResult(timestamp_us=timestamp_us, objects=self._filter_objects(objects))

        result.anomaly_score = self.calculate_anomaly_score(result)
        result.raise_anomaly_score(min(result.anomaly_score + self.analyze_scene_activity(result), 1.0))

        unknown_visitor = self.detect_unknown_visitors(result)
        above_threshold = result.anomaly_score > self.config.anomaly_threshold

        result.is_anomaly = unknown_visitor or above_threshold
        if unknown_visitor:
            result.anomaly_type, result.anomaly_description = UNKNOWN_VISITOR
        elif above_threshold:
            result.anomaly_type, result.anomaly_description = METADATA_ANOMALY
        return result

    def _filter_objects(self, objects: List[DetectedObject]) -> List[DetectedObject]:
        kept = []
        for obj in objects:
            if obj.type_id == "person" and obj.confidence < self.config.min_person_confidence:
                continue
            if obj.type_id == "vehicle" and obj.confidence < self.config.min_vehicle_confidence:
                continue
            kept.append(obj)
        return kept

    def is_business_hours(self, timestamp_us: int) -> bool:
        return self.config.is_business_hours(time_of_day_seconds(timestamp_us))

    def calculate_anomaly_score(self, result: FrameAnalysisResult) -> float:
        """Heuristic score from motion and object counts."""
        score = 0.0
        if result.motion_level > self.motion_threshold:
            score += result.motion_level * 0.5

        if not self.is_business_hours(result.timestamp_us):
            score += result.count_objects("person") * 0.15
            score += result.count_objects("vehicle") * 0.1
        else:
            score += result.count_unknown_persons() * 0.05

        return min(score, 1.0)

    def analyze_scene_activity(self, result: FrameAnalysisResult) -> float:
        """Extra score for any activity outside business hours."""
        if self.is_business_hours(result.timestamp_us):
            return 0.0
        if result.count_objects("person") > 0 or result.motion_level > SCENE_MOTION_LEVEL:
            return 0.3 + result.motion_level
        return 0.0

    def detect_unknown_visitors(self, result: FrameAnalysisResult) -> bool:
        """
        Flag unknown persons present longer than the configured threshold.

        Matching objects get a durationSecs attribute. Tracks missing from
        the frame are forgotten.
        """
        if not self.config.enable_unknown_visitor_detection:
            return False

        detected = False
        for obj in result.objects:
            if obj.type_id != "person" or not obj.track_id or not obj.is_unknown():
                continue

            first_seen = self._unknown_visitor_tracks.get(obj.track_id)
            if first_seen is None:
                self._unknown_visitor_tracks[obj.track_id] = result.timestamp_us
                continue

            duration = (result.timestamp_us - first_seen) // MICROS_PER_SECOND
            if duration > self.config.unknown_visitor_threshold_secs:
                obj.attributes["durationSecs"] = str(duration)
                detected = True

        present = {obj.track_id for obj in result.objects}
        for track_id in list(self._unknown_visitor_tracks):
            if track_id not in present:
                del self._unknown_visitor_tracks[track_id]

        if detected:
            logger.info(f"Unknown visitor exceeded {self.config.unknown_visitor_threshold_secs}s on {self.device_id}")
        return detected

    def detect_anomalous_activity(self, result: FrameAnalysisResult) -> bool:
        """High motion, or several persons outside the region of interest."""
        if not self.config.enable_activity_analysis:
            return False

        if result.motion_level > ACTIVITY_MOTION_LEVEL:
            return True

        outside = 0
        for obj in result.objects:
            if obj.type_id != "person":
                continue
            x, y = obj.bounding_box.normalized_center()
            if not self.is_in_region_of_interest(x, y):
                outside += 1
        return outside >= RESTRICTED_PERSON_COUNT

    def is_in_region_of_interest(self, x: float, y: float) -> bool:
        """
        Check a normalised point against the configured regions.

        No regions means the whole frame is of interest. A point inside an
        inclusion zone is of interest; inside an exclusion zone it is not.
        Otherwise the point is of interest only when exclusion zones exist.
        """
        regions = self.config.detection_regions
        if not regions:
            return True

        for region in regions:
            if not region.is_exclusion_zone and region.contains(x, y):
                return True

        for region in regions:
            if region.is_exclusion_zone and region.contains(x, y):
                return False

        return any(region.is_exclusion_zone for region in regions)

    def reset(self) -> None:
        self._unknown_visitor_tracks.clear()
