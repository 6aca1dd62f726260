"""
Contracts for the external reasoning oracle: context items, requests and responses.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from shared.time_utils import format_timestamp
from .observation import DetectedObject, FrameAnalysisResult


class ContextItemType(str, Enum):
    OBJECT_DETECTION = "OBJECT"
    MOTION_EVENT = "MOTION"
    ANOMALY_DETECTION = "ANOMALY"
    ENVIRONMENT_INFO = "INFO"
    HISTORICAL_PATTERN = "PATTERN"
    CROSS_CAMERA_INFO = "CROSS-CAM"
    SYSTEM_EVENT = "SYSTEM"


@dataclass
class ContextItem:
    """Timestamped, typed and confidence-scored piece of prompt context."""
    item_type: ContextItemType
    description: str
    timestamp_us: int
    confidence: float = 1.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_string(self) -> str:
        return f"[{format_timestamp(self.timestamp_us)}] [{self.item_type.value}] {self.description}"

    @classmethod
    def from_detected_object(cls, obj: DetectedObject) -> "ContextItem":
        box = obj.bounding_box
        description = (
            f"Detected {obj.type_id} with confidence {obj.confidence:.2f}"
            f" at position [x:{box.x:g}, y:{box.y:g}, width:{box.width:g}, height:{box.height:g}]"
        )
        if obj.recognition_status:
            description += f" (Recognition: {obj.recognition_status})"

        return cls(
            item_type=ContextItemType.OBJECT_DETECTION,
            description=description,
            timestamp_us=obj.timestamp_us,
            confidence=obj.confidence,
            metadata={
                "objectType": obj.type_id,
                "trackId": obj.track_id,
                "boundingBox": {"x": box.x, "y": box.y, "width": box.width, "height": box.height},
                "attributes": dict(obj.attributes),
            },
        )

    @classmethod
    def from_analysis_result(cls, result: FrameAnalysisResult) -> "ContextItem":
        if result.is_anomaly:
            item_type = ContextItemType.ANOMALY_DETECTION
            description = f"Anomaly detected: {result.anomaly_type} - {result.anomaly_description}"
            confidence = result.anomaly_score
        elif result.motion_level > 0.05:
            item_type = ContextItemType.MOTION_EVENT
            description = f"Motion detected with level {result.motion_level:.6f}"
            confidence = result.motion_level
        else:
            item_type = ContextItemType.ENVIRONMENT_INFO
            description = "Normal scene activity"
            confidence = 1.0 - result.anomaly_score

        return cls(
            item_type=item_type,
            description=description,
            timestamp_us=result.timestamp_us,
            confidence=confidence,
            metadata={
                "timestampUs": result.timestamp_us,
                "timeFormatted": format_timestamp(result.timestamp_us),
                "anomalyScore": result.anomaly_score,
                "anomalyType": result.anomaly_type,
                "anomalyDescription": result.anomaly_description,
                "isAnomaly": result.is_anomaly,
                "motionLevel": result.motion_level,
                "objectCounts": {
                    "person": result.count_objects("person"),
                    "unknownPerson": result.count_unknown_persons(),
                    "vehicle": result.count_objects("vehicle"),
                    "total": len(result.objects),
                },
            },
        )


class RequestType(str, Enum):
    ANOMALY_ANALYSIS = "anomaly_analysis"
    SITUATION_ASSESSMENT = "situation_assessment"
    RESPONSE_PLANNING = "response_planning"
    PREDICTIVE_ANALYSIS = "predictive_analysis"
    CROSS_CAMERA_ANALYSIS = "cross_camera_analysis"


class RequestPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_TASK_LINES = {
    RequestType.ANOMALY_ANALYSIS:
        "Analyze the anomaly detected in the security camera and provide context.",
    RequestType.SITUATION_ASSESSMENT:
        "Assess the overall situation in the security camera view.",
    RequestType.RESPONSE_PLANNING:
        "Plan an appropriate response to the situation in the security camera.",
    RequestType.PREDICTIVE_ANALYSIS:
        "Predict potential future behavior based on the observed activity.",
    RequestType.CROSS_CAMERA_ANALYSIS:
        "Analyze information from multiple cameras to understand the overall security situation.",
}

_INSTRUCTIONS = {
    RequestType.ANOMALY_ANALYSIS: [
        "Analyze the anomaly described in the context.",
        "Determine the potential security implications.",
        "Assess whether this might be a false alarm or a genuine security concern.",
        "Provide reasoning for your assessment.",
        "Recommend whether this requires human attention.",
    ],
    RequestType.SITUATION_ASSESSMENT: [
        "Assess the overall situation in the camera view.",
        "Identify any potential security concerns.",
        "Consider the time of day and normal patterns for this location.",
        "Determine the level of concern (Normal, Low, Medium, High).",
        "Provide reasoning for your assessment.",
    ],
    RequestType.RESPONSE_PLANNING: [
        "Analyze the security situation described in the context.",
        "Determine the appropriate security response level.",
        "Suggest specific actions that should be taken.",
        "Prioritize these actions.",
        "Provide reasoning for your recommendations.",
    ],
    RequestType.PREDICTIVE_ANALYSIS: [
        "Analyze the patterns of behavior described in the context.",
        "Predict what might happen next based on these patterns.",
        "Identify potential security implications of these predictions.",
        "Assign confidence levels to your predictions.",
        "Suggest what to monitor or look for to confirm your predictions.",
    ],
    RequestType.CROSS_CAMERA_ANALYSIS: [
        "Analyze information from multiple cameras to understand the overall situation.",
        "Identify any connections or patterns across different camera views.",
        "Determine if there are coordinated activities happening.",
        "Assess the overall security implications.",
        "Recommend cameras to focus on and what to look for.",
    ],
}

_OUTPUT_FORMAT = """OUTPUT FORMAT:
Provide your response in JSON format with the following structure:
{
  "reasoning": "Your detailed analysis and reasoning",
  "confidenceScore": 0.0-1.0,
  "actions": [
    {
      "type": "One of: MONITOR, ALERT, TRACK, ANALYZE_FURTHER, CROSS_REFERENCE, PREDICT, RECOMMEND",
      "description": "Description of the action",
      "confidence": 0.0-1.0,
      "parameters": {}
    }
  ]
}
"""


@dataclass
class OracleRequest:
    """Request for the reasoning oracle."""
    device_id: str
    request_type: RequestType
    request_time_us: int
    priority: RequestPriority = RequestPriority.MEDIUM
    context_items: List[ContextItem] = field(default_factory=list)

    def add_context_item(self, item: ContextItem) -> None:
        self.context_items.append(item)

    def generate_prompt(self) -> str:
        """Render the prompt: task, current time, context, instructions, output format."""
        lines = [
            f"TASK: {_TASK_LINES[self.request_type]}",
            "",
            f"CURRENT TIME: {format_timestamp(self.request_time_us)}",
            "",
            "CONTEXT:",
        ]
        for item in sorted(self.context_items, key=lambda i: i.timestamp_us):
            lines.append(f"- {item.to_string()}")

        lines.append("")
        lines.append("INSTRUCTIONS:")
        for index, instruction in enumerate(_INSTRUCTIONS[self.request_type], start=1):
            lines.append(f"{index}. {instruction}")

        lines.append("")
        return "\n".join(lines) + "\n" + _OUTPUT_FORMAT


class OracleActionType(str, Enum):
    MONITOR = "MONITOR"
    ALERT = "ALERT"
    TRACK = "TRACK"
    ANALYZE_FURTHER = "ANALYZE_FURTHER"
    CROSS_REFERENCE = "CROSS_REFERENCE"
    PREDICT = "PREDICT"
    RECOMMEND = "RECOMMEND"


@dataclass
class RecommendedAction:
    """Action recommended by the oracle."""
    action_type: OracleActionType
    description: str
    confidence: float
    parameters: Dict[str, Any] = field(default_factory=dict)


_JSON_BLOCK = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


@dataclass
class OracleResponse:
    """Structured oracle answer; success is False when the call or parse failed."""
    reasoning: str = ""
    confidence_score: float = 0.0
    actions: List[RecommendedAction] = field(default_factory=list)
    response_time_us: int = 0
    success: bool = False
    error_message: str = ""

    @classmethod
    def failure(cls, message: str, response_time_us: int = 0) -> "OracleResponse":
        return cls(success=False, error_message=message, response_time_us=response_time_us)

    @classmethod
    def parse(cls, text: str, response_time_us: int = 0) -> "OracleResponse":
        """
        Parse oracle output into a response.

        Accepts either bare JSON or JSON inside a fenced code block. Unknown
        action types fall back to MONITOR. Never raises.
        """
        match = _JSON_BLOCK.search(text or "")
        payload = match.group(1) if match else text

        try:
            data = json.loads(payload)
            actions = []
            for entry in data["actions"]:
                try:
                    action_type = OracleActionType(entry["type"])
                except ValueError:
                    action_type = OracleActionType.MONITOR
                actions.append(RecommendedAction(
                    action_type=action_type,
                    description=str(entry["description"]),
                    confidence=float(entry["confidence"]),
                    parameters=dict(entry.get("parameters") or {}),
                ))

            return cls(
                reasoning=str(data["reasoning"]),
                confidence_score=float(data["confidenceScore"]),
                actions=actions,
                response_time_us=response_time_us,
                success=True,
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            return cls.failure(f"Failed to parse LLM response: {e}", response_time_us)
