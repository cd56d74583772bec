"""JSON persistence for the device configuration and the reading log"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from device.base import DeviceConfig, Reading
from errors import PersistenceError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "device_config.json"
DATA_FILENAME = "device_data.json"


class JsonDocument:
    """
    A single JSON document on disk, always rewritten as a whole.

    Writes go to a temporary file in the same directory which then
    replaces the target, so a crash mid-write keeps the previous version.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Any:
        try:
            with self.path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Cannot read {self.path}: {e}") from e

    def save(self, payload: Any) -> None:
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        except OSError as e:
            raise PersistenceError(f"Cannot write {self.path}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_name, self.path)
        except (OSError, TypeError, ValueError) as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise PersistenceError(f"Cannot write {self.path}: {e}") from e

    def remove(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot remove {self.path}: {e}") from e


class Persistence:
    """
    Load/save wrappers for the two documents the monitor keeps.

    Failures are logged and never raised: a failed load leaves the safe
    default (no config, empty log), a failed save is retried on the next
    flush.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.config_doc = JsonDocument(self.data_dir / CONFIG_FILENAME)
        self.readings_doc = JsonDocument(self.data_dir / DATA_FILENAME)

    def load_config(self) -> Optional[DeviceConfig]:
        if not self.config_doc.exists():
            return None
        try:
            config = DeviceConfig.from_dict(self.config_doc.load())
        except (PersistenceError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"Failed to load device configuration: {e}")
            return None
        logger.info("Loaded device configuration")
        return config

    def load_readings(self) -> list[Reading]:
        if not self.readings_doc.exists():
            return []
        try:
            readings = [Reading.from_dict(item) for item in self.readings_doc.load()]
        except (PersistenceError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"Failed to load historical data: {e}")
            return []
        logger.info(f"Loaded {len(readings)} historical readings")
        return readings

    def save_config(self, config: DeviceConfig) -> bool:
        try:
            self.config_doc.save(config.to_dict())
        except PersistenceError as e:
            logger.error(f"Failed to save device configuration: {e}")
            return False
        return True

    def remove_config(self) -> bool:
        try:
            self.config_doc.remove()
        except PersistenceError as e:
            logger.error(f"Failed to remove device configuration: {e}")
            return False
        return True

    def save_readings(self, readings: list[Reading]) -> bool:
        try:
            self.readings_doc.save([r.to_dict() for r in readings])
        except PersistenceError as e:
            logger.error(f"Failed to save readings: {e}")
            return False
        return True

    def flush(self, readings: list[Reading], config: Optional[DeviceConfig]) -> None:
        """Rewrite the reading log and, when configured, the device configuration"""
        self.save_readings(readings)
        if config is not None:
            self.save_config(config)
