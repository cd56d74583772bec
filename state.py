"""Shared application state of the monitor"""
from dataclasses import dataclass, field
from typing import Any, Optional

from device.base import Connectivity, DeviceConfig
from storage.readings import ReadingStore


@dataclass
class MonitorState:
    """
    Everything the supervisor, scheduler and HTTP routes share.

    All mutation happens on the event loop, so no locking is needed.

    Attributes:
        config: Provisioned device, None until configured
        connectivity: Last connectivity reported by the device
        points: Cumulative raw data points (last write wins)
        store: Latest reading and captured history
    """
    config: Optional[DeviceConfig] = None
    connectivity: Connectivity = Connectivity.DISCONNECTED
    points: dict[str, Any] = field(default_factory=dict)
    store: ReadingStore = field(default_factory=ReadingStore)

    @property
    def configured(self) -> bool:
        return self.config is not None

    @property
    def connected(self) -> bool:
        return self.connectivity is Connectivity.CONNECTED
