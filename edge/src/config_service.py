"""
Configuration service for the security reasoning agent.

Owns the global settings and one immutable DeviceConfig snapshot per camera.
Components receive the service (or a snapshot) at construction and are told
about changes through subscriptions.
"""

import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from shared.interfaces.config import IConfigService
from shared.models.config import AgentConfigDocument, DeviceConfig, GlobalConfig


CONFIG_FILE_NAME = "config.json"


@dataclass
class ConfigLoadResult:
    """Outcome of parsing a configuration document."""
    success: bool
    device_count: int = 0
    error: str = ""


class ConfigService(IConfigService):
    """
    Explicitly constructed configuration owner.

    Device snapshots are frozen pydantic models; an update replaces the
    snapshot and notifies every subscriber with the new one.
    """

    def __init__(self, global_config: Optional[GlobalConfig] = None, config_path: Optional[str] = None):
        """
        Initialize configuration service.

        Args:
            global_config: Initial global settings, defaults when omitted
            config_path: Location of config.json, defaults to <dataStoragePath>/config.json
        """
        self._global_config = global_config or GlobalConfig()
        self._config_path = config_path
        self._devices: Dict[str, DeviceConfig] = {}
        self._listeners: List[Callable[[str, DeviceConfig], None]] = []
        self._lock = threading.Lock()

    @property
    def config_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)
        return Path(self._global_config.data_storage_path) / CONFIG_FILE_NAME

    def load(self, path: Optional[str] = None) -> ConfigLoadResult:
        """Load settings from a JSON file."""
        target = Path(path) if path else self.config_path
        if not target.exists():
            logger.info(f"No configuration file at {target}, using defaults")
            return ConfigLoadResult(success=False, error=f"Configuration file not found: {target}")

        try:
            text = target.read_text(encoding="utf-8")
        except OSError as e:
            logger.error(f"Error reading configuration {target}: {e}")
            return ConfigLoadResult(success=False, error=str(e))

        if path:
            self._config_path = str(target)
        return self.load_from_json(text)

    def load_from_json(self, text: str) -> ConfigLoadResult:
        """Parse a JSON configuration document; never raises."""
        try:
            raw = json.loads(text)
            if not isinstance(raw, dict):
                raise ValueError("configuration root must be an object")

            devices = []
            for entry in raw.get("devices", []) or []:
                if isinstance(entry, dict) and entry.get("deviceId"):
                    devices.append(entry)
                else:
                    logger.warning("Skipping device entry without deviceId")
            raw["devices"] = devices

            document = AgentConfigDocument.model_validate(raw)
        except (ValueError, ValidationError) as e:
            logger.error(f"Error parsing configuration: {e}")
            return ConfigLoadResult(success=False, error=str(e))

        global_fields = document.model_dump(exclude={"devices"})
        with self._lock:
            self._global_config = GlobalConfig(**global_fields)
            for device in document.devices:
                self._devices[device.device_id] = device

        for device in document.devices:
            self._notify(device)

        logger.info(f"Loaded configuration with {len(document.devices)} devices")
        return ConfigLoadResult(success=True, device_count=len(document.devices))

    def to_json(self) -> str:
        with self._lock:
            document = AgentConfigDocument(
                **self._global_config.model_dump(),
                devices=list(self._devices.values()),
            )
        return document.model_dump_json(by_alias=True, indent=2)

    def save(self, path: Optional[str] = None) -> bool:
        """Write the configuration document to disk."""
        target = Path(path) if path else self.config_path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(self.to_json(), encoding="utf-8")
            logger.debug(f"Configuration saved to {target}")
            return True
        except OSError as e:
            logger.error(f"Error saving configuration to {target}: {e}")
            return False

    def get_global_config(self) -> GlobalConfig:
        with self._lock:
            return self._global_config

    def update_global_config(self, config: GlobalConfig) -> None:
        with self._lock:
            self._global_config = config

    def get_device_config(self, device_id: str) -> DeviceConfig:
        """Get the device snapshot, registering defaults for unknown devices."""
        with self._lock:
            config = self._devices.get(device_id)
            if config is None:
                config = DeviceConfig(device_id=device_id)
                self._devices[device_id] = config
            return config

    def update_device_config(self, config: DeviceConfig) -> None:
        with self._lock:
            self._devices[config.device_id] = config
        self._notify(config)

    def set_anomaly_threshold(self, device_id: str, threshold: float) -> DeviceConfig:
        """Clamp and store a device's anomaly threshold."""
        threshold = min(max(threshold, 0.0), 1.0)
        updated = self.get_device_config(device_id).model_copy(update={"anomaly_threshold": threshold})
        self.update_device_config(updated)
        logger.info(f"Anomaly threshold for {device_id} set to {threshold:.2f}")
        return updated

    def subscribe(self, callback: Callable[[str, DeviceConfig], None]) -> None:
        with self._lock:
            self._listeners.append(callback)

    def get_device_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._devices.keys())

    def _notify(self, config: DeviceConfig) -> None:
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(config.device_id, config)
            except Exception as e:
                logger.error(f"Error in configuration listener: {e}")
