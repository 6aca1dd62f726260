"""
Unit tests for the configuration service.
"""

import json
from unittest.mock import Mock

import pytest

from edge.src.config_service import ConfigService
from shared.models import DeviceConfig, GlobalConfig


SAMPLE_CONFIG = {
    "dataStoragePath": "/tmp/agent-data/",
    "enableDiagnostics": True,
    "diagnosticLogLevel": 3,
    "enableLLMIntegration": True,
    "llmApiKey": "secret",
    "devices": [
        {
            "deviceId": "cam-1",
            "deviceName": "Lobby",
            "anomalyThreshold": 0.55,
            "unknownVisitorThresholdSecs": 120,
            "businessHours": [{"start": 25200, "end": 68400}],
            "detectionRegions": [
                {"name": "door", "isExclusionZone": False,
                 "points": [{"x": 0, "y": 0}, {"x": 1, "y": 0}, {"x": 1, "y": 1}]},
            ],
        },
        {"deviceName": "no id"},
        {"deviceId": "cam-2"},
    ],
}


class TestConfigService:
    """Test cases for ConfigService."""

    def setup_method(self):
        self.service = ConfigService()

    def test_load_from_json(self):
        """Test parsing a full configuration document."""
        result = self.service.load_from_json(json.dumps(SAMPLE_CONFIG))

        assert result.success
        assert result.device_count == 2
        assert self.service.get_device_ids() == ["cam-1", "cam-2"]

        global_config = self.service.get_global_config()
        assert global_config.data_storage_path == "/tmp/agent-data/"
        assert global_config.diagnostic_log_level == 3
        assert global_config.enable_llm_integration
        assert global_config.llm_api_key == "secret"

        lobby = self.service.get_device_config("cam-1")
        assert lobby.device_name == "Lobby"
        assert lobby.anomaly_threshold == 0.55
        assert lobby.unknown_visitor_threshold_secs == 120
        assert lobby.business_hours[0].start == 25200
        assert lobby.detection_regions[0].name == "door"

    def test_missing_fields_take_defaults(self):
        """Test absent keys fall back to defaults."""
        self.service.load_from_json(json.dumps(SAMPLE_CONFIG))

        config = self.service.get_device_config("cam-2")
        assert config.anomaly_threshold == 0.7
        assert config.enable_learning

    def test_invalid_json_is_reported(self):
        """Test malformed JSON is reported without raising."""
        result = self.service.load_from_json("{not json")

        assert not result.success
        assert result.error
        assert self.service.get_device_ids() == []

    def test_invalid_values_are_reported(self):
        """Test out-of-range values are reported without raising."""
        document = {"devices": [{"deviceId": "cam-1", "anomalyThreshold": 3.0}]}
        result = self.service.load_from_json(json.dumps(document))

        assert not result.success
        assert self.service.get_device_ids() == []

    def test_non_object_root_is_reported(self):
        """Test a non-object document root is rejected."""
        assert not self.service.load_from_json("[1, 2, 3]").success

    def test_unknown_device_gets_defaults(self):
        """Test an unknown device is registered with defaults."""
        config = self.service.get_device_config("new-cam")

        assert config.device_id == "new-cam"
        assert config.anomaly_threshold == 0.7
        assert "new-cam" in self.service.get_device_ids()

    def test_set_anomaly_threshold_clamps_and_notifies(self):
        """Test threshold changes are clamped and broadcast."""
        listener = Mock()
        self.service.subscribe(listener)

        updated = self.service.set_anomaly_threshold("cam-1", 1.7)

        assert updated.anomaly_threshold == 1.0
        assert self.service.get_device_config("cam-1").anomaly_threshold == 1.0
        listener.assert_called_once_with("cam-1", updated)

    def test_snapshots_are_replaced_not_mutated(self):
        """Test updates replace snapshots held by readers."""
        before = self.service.get_device_config("cam-1")
        self.service.set_anomaly_threshold("cam-1", 0.2)

        assert before.anomaly_threshold == 0.7
        assert self.service.get_device_config("cam-1").anomaly_threshold == 0.2

    def test_listener_failure_is_contained(self):
        """Test a failing subscriber does not block others."""
        failing = Mock(side_effect=RuntimeError("boom"))
        healthy = Mock()
        self.service.subscribe(failing)
        self.service.subscribe(healthy)

        self.service.update_device_config(DeviceConfig(device_id="cam-1", anomaly_threshold=0.4))

        healthy.assert_called_once()

    def test_load_notifies_listeners(self):
        """Test loading a document notifies subscribers per device."""
        listener = Mock()
        self.service.subscribe(listener)

        self.service.load_from_json(json.dumps(SAMPLE_CONFIG))

        assert [c.args[0] for c in listener.call_args_list] == ["cam-1", "cam-2"]

    def test_json_round_trip(self):
        """Test serialising and parsing preserves the configuration."""
        self.service.load_from_json(json.dumps(SAMPLE_CONFIG))
        text = self.service.to_json()

        document = json.loads(text)
        assert document["llmApiKey"] == "secret"
        assert document["devices"][0]["deviceId"] == "cam-1"

        other = ConfigService()
        assert other.load_from_json(text).success
        assert other.get_device_config("cam-1") == self.service.get_device_config("cam-1")
        assert other.get_global_config() == self.service.get_global_config()

    def test_save_and_load_file(self, tmp_path):
        """Test saving to disk and loading it back."""
        path = tmp_path / "nested" / "config.json"
        self.service.update_global_config(GlobalConfig(diagnostic_log_level=4))
        self.service.set_anomaly_threshold("cam-9", 0.33)

        assert self.service.save(str(path))

        loaded = ConfigService()
        result = loaded.load(str(path))
        assert result.success
        assert loaded.get_global_config().diagnostic_log_level == 4
        assert loaded.get_device_config("cam-9").anomaly_threshold == pytest.approx(0.33)
        assert loaded.config_path == path

    def test_missing_file(self, tmp_path):
        """Test loading a missing file reports failure."""
        result = self.service.load(str(tmp_path / "absent.json"))

        assert not result.success
        assert "not found" in result.error

    def test_default_path_under_storage(self):
        """Test the default config path sits under the storage path."""
        service = ConfigService(GlobalConfig(data_storage_path="/data/agent"))
        assert str(service.config_path) == "/data/agent/config.json"
