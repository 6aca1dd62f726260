"""
Configuration service interfaces.
"""

from abc import ABC, abstractmethod
from typing import Callable, List

from ..models import DeviceConfig, GlobalConfig


class IConfigService(ABC):
    """Interface for the configuration owner."""

    @abstractmethod
    def get_global_config(self) -> GlobalConfig:
        """Get the current global settings snapshot."""
        pass

    @abstractmethod
    def get_device_config(self, device_id: str) -> DeviceConfig:
        """Get the device settings snapshot, creating defaults if unknown."""
        pass

    @abstractmethod
    def update_device_config(self, config: DeviceConfig) -> None:
        """Replace a device snapshot and notify subscribers."""
        pass

    @abstractmethod
    def subscribe(self, callback: Callable[[str, DeviceConfig], None]) -> None:
        """Register a device-config change listener."""
        pass

    @abstractmethod
    def get_device_ids(self) -> List[str]:
        """List configured device ids."""
        pass
