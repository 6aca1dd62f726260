"""
Configuration documents for devices and the agent as a whole.

Field aliases match the camelCase keys of the JSON configuration file.
"""

from typing import List, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.time_utils import is_time_in_range


class TimeRange(BaseModel):
    """Inclusive range in seconds from local midnight."""
    model_config = ConfigDict(frozen=True)

    start: int
    end: int

    def contains(self, seconds_of_day: int) -> bool:
        return is_time_in_range(seconds_of_day, self.start, self.end)


class RegionPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class DetectionRegion(BaseModel):
    """Polygon in normalised frame coordinates."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = ""
    points: List[RegionPoint] = Field(default_factory=list)
    is_exclusion_zone: bool = Field(default=False, alias="isExclusionZone")

    def contains(self, x: float, y: float) -> bool:
        """Point-in-polygon test, boundary counts as inside."""
        vertices: List[Tuple[float, float]] = [(p.x, p.y) for p in self.points]
        if len(vertices) < 3:
            return False

        inside = False
        j = len(vertices) - 1
        for i, (xi, yi) in enumerate(vertices):
            xj, yj = vertices[j]
            # On an edge
            cross = (x - xi) * (yj - yi) - (y - yi) * (xj - xi)
            if abs(cross) < 1e-9 and min(xi, xj) <= x <= max(xi, xj) and min(yi, yj) <= y <= max(yi, yj):
                return True
            if (yi > y) != (yj > y):
                x_intersect = (xj - xi) * (y - yi) / (yj - yi) + xi
                if x < x_intersect:
                    inside = not inside
            j = i
        return inside


def _default_business_hours() -> List[TimeRange]:
    return [TimeRange(start=8 * 3600, end=18 * 3600)]


class DeviceConfig(BaseModel):
    """Per-camera analysis settings. Instances are immutable snapshots."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    device_id: str = Field(alias="deviceId")
    device_name: str = Field(default="", alias="deviceName")

    min_person_confidence: float = Field(default=0.6, alias="minPersonConfidence")
    min_vehicle_confidence: float = Field(default=0.6, alias="minVehicleConfidence")
    detection_regions: List[DetectionRegion] = Field(default_factory=list, alias="detectionRegions")

    anomaly_threshold: float = Field(default=0.7, alias="anomalyThreshold", ge=0.0, le=1.0)
    enable_unknown_visitor_detection: bool = Field(default=True, alias="enableUnknownVisitorDetection")
    unknown_visitor_threshold_secs: int = Field(default=300, alias="unknownVisitorThresholdSecs")
    enable_activity_analysis: bool = Field(default=True, alias="enableActivityAnalysis")

    enable_learning: bool = Field(default=True, alias="enableLearning")
    baseline_duration_days: int = Field(default=7, alias="baselineDurationDays")

    enable_ai_reasoning: bool = Field(default=True, alias="enableAIReasoning")
    reasoning_confidence_threshold: float = Field(default=0.65, alias="reasoningConfidenceThreshold")
    reasoning_interval: int = Field(default=60, alias="reasoningInterval")
    enable_cross_camera_analysis: bool = Field(default=True, alias="enableCrossCameraAnalysis")

    business_hours: List[TimeRange] = Field(default_factory=_default_business_hours, alias="businessHours")

    @field_validator("detection_regions")
    @classmethod
    def _drop_empty_regions(cls, regions: List[DetectionRegion]) -> List[DetectionRegion]:
        return [region for region in regions if region.points]

    def is_business_hours(self, seconds_of_day: int) -> bool:
        return any(r.contains(seconds_of_day) for r in self.business_hours)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


class GlobalConfig(BaseModel):
    """Agent-wide settings: storage, diagnostics, SIP and the reasoning oracle."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    data_storage_path: str = Field(default="/var/lib/nx-agent/", alias="dataStoragePath")
    max_storage_size_mb: int = Field(default=1024, alias="maxStorageSizeMB")
    enable_diagnostics: bool = Field(default=True, alias="enableDiagnostics")
    diagnostic_log_level: int = Field(default=2, alias="diagnosticLogLevel", ge=0, le=4)

    enable_sip_integration: bool = Field(default=False, alias="enableSipIntegration")
    sip_server: str = Field(default="", alias="sipServer")
    sip_username: str = Field(default="", alias="sipUsername")
    sip_password: str = Field(default="", alias="sipPassword")
    alarm_phone_number: str = Field(default="", alias="alarmPhoneNumber")

    enable_llm_integration: bool = Field(default=False, alias="enableLLMIntegration")
    llm_api_key: str = Field(default="", alias="llmApiKey")
    llm_model_name: str = Field(default="claude-3-haiku-20240307", alias="llmModelName")
    llm_api_endpoint: str = Field(default="https://api.anthropic.com/v1/messages", alias="llmApiEndpoint")
    llm_max_tokens: int = Field(default=4096, alias="llmMaxTokens")
    llm_temperature: float = Field(default=0.7, alias="llmTemperature")
    llm_request_timeout_secs: int = Field(default=30, alias="llmRequestTimeoutSecs")


class AgentConfigDocument(GlobalConfig):
    """Full config.json document: global settings plus the device list."""

    devices: List[DeviceConfig] = Field(default_factory=list)
