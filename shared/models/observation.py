"""
Observation data models shared by every reasoning component.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


# Reference frame size used to normalise pixel coordinates
FRAME_WIDTH = 1920
FRAME_HEIGHT = 1080


@dataclass
class BoundingBox:
    """Pixel bounding box of a detected object."""
    x: float
    y: float
    width: float
    height: float

    def center(self) -> Tuple[float, float]:
        """Get the pixel centre of the box."""
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)

    def normalized_center(self, frame_width: int = FRAME_WIDTH,
                          frame_height: int = FRAME_HEIGHT) -> Tuple[float, float]:
        """Get the box centre normalised to the 0..1 frame range."""
        cx, cy = self.center()
        return (cx / frame_width, cy / frame_height)


@dataclass
class DetectedObject:
    """Single object reported by the external detector."""
    type_id: str
    confidence: float
    bounding_box: BoundingBox
    attributes: Dict[str, str] = field(default_factory=dict)
    track_id: str = ""
    timestamp_us: int = 0

    @property
    def recognition_status(self) -> Optional[str]:
        return self.attributes.get("recognitionStatus")

    def is_unknown(self) -> bool:
        """Check whether the recognizer reported this object as unknown."""
        return self.recognition_status == "unknown"


@dataclass
class MotionInfo:
    """Motion summary for a frame."""
    overall_motion_level: float = 0.0
    motion_regions: List[Tuple[float, float]] = field(default_factory=list)


@dataclass
class FrameAnalysisResult:
    """
    Result of analysing one frame or metadata tick.

    The anomaly score only ever grows while the observation moves through the
    pipeline; use raise_anomaly_score instead of assigning it directly.
    """
    timestamp_us: int
    objects: List[DetectedObject] = field(default_factory=list)
    motion: MotionInfo = field(default_factory=MotionInfo)
    anomaly_score: float = 0.0
    anomaly_type: str = ""
    anomaly_description: str = ""
    is_anomaly: bool = False

    @property
    def motion_level(self) -> float:
        return self.motion.overall_motion_level

    def count_objects(self, type_id: str) -> int:
        """Count detected objects of the given type."""
        return sum(1 for obj in self.objects if obj.type_id == type_id)

    def count_unknown_persons(self) -> int:
        """Count persons whose recognition status is unknown."""
        return sum(1 for obj in self.objects if obj.type_id == "person" and obj.is_unknown())

    def raise_anomaly_score(self, score: float) -> None:
        """Raise the anomaly score, never lowering it."""
        self.anomaly_score = max(self.anomaly_score, score)
