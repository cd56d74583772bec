import json
from datetime import datetime, timezone

from device.base import DeviceConfig, Reading
from storage.persistence import CONFIG_FILENAME, DATA_FILENAME, Persistence

CONFIG = DeviceConfig(id="bf3c9a7e1d2f4a5b6c", key="0123456789abcdef", ip="192.168.1.20", version="3.3")
READING = Reading(
    watt=345.6,
    current=1.52,
    voltage=230.1,
    power_on=True,
    connected=True,
    timestamp=datetime(2026, 3, 1, 12, 0, 5, 250000, tzinfo=timezone.utc)
)


def test_flush_writes_both_documents(tmp_path):
    persistence = Persistence(tmp_path)

    persistence.flush([READING], CONFIG)

    assert json.loads((tmp_path / CONFIG_FILENAME).read_text()) == CONFIG.to_dict()
    assert json.loads((tmp_path / DATA_FILENAME).read_text()) == [{
        "watt": 345.6,
        "current": 1.52,
        "voltage": 230.1,
        "power_on": True,
        "connected": True,
        "timestamp": "2026-03-01T12:00:05.250Z",
    }]


def test_flush_without_config_skips_config(tmp_path):
    persistence = Persistence(tmp_path)

    persistence.flush([], None)

    assert not (tmp_path / CONFIG_FILENAME).exists()
    assert json.loads((tmp_path / DATA_FILENAME).read_text()) == []


def test_load_returns_saved_state(tmp_path):
    Persistence(tmp_path).flush([READING], CONFIG)

    persistence = Persistence(tmp_path)

    assert persistence.load_config() == CONFIG
    assert persistence.load_readings() == [READING]


def test_load_missing_files_gives_defaults(tmp_path):
    persistence = Persistence(tmp_path)

    assert persistence.load_config() is None
    assert persistence.load_readings() == []


def test_load_corrupt_files_gives_defaults(tmp_path, caplog):
    (tmp_path / CONFIG_FILENAME).write_text("{not json")
    (tmp_path / DATA_FILENAME).write_text('[{"watt": 1}]')

    persistence = Persistence(tmp_path)

    assert persistence.load_config() is None
    assert persistence.load_readings() == []
    assert "Failed to load device configuration" in caplog.text
    assert "Failed to load historical data" in caplog.text


def test_load_accepts_javascript_timestamps(tmp_path):
    (tmp_path / DATA_FILENAME).write_text(json.dumps([{
        "watt": 12.5,
        "current": 0.1,
        "voltage": 229.9,
        "power_on": True,
        "connected": True,
        "timestamp": "2025-11-02T08:15:00.000Z",
    }]))

    readings = Persistence(tmp_path).load_readings()

    assert readings[0].timestamp == datetime(2025, 11, 2, 8, 15, tzinfo=timezone.utc)


def test_save_failure_is_logged_not_raised(tmp_path, caplog):
    persistence = Persistence(tmp_path / "missing" / "dir")

    assert persistence.save_readings([READING]) is False
    assert persistence.save_config(CONFIG) is False
    assert "Failed to save readings" in caplog.text


def test_remove_config(tmp_path):
    persistence = Persistence(tmp_path)
    persistence.save_config(CONFIG)

    assert persistence.remove_config() is True
    assert not (tmp_path / CONFIG_FILENAME).exists()
    # Removing twice is fine
    assert persistence.remove_config() is True


def test_save_leaves_no_temp_files(tmp_path):
    persistence = Persistence(tmp_path)
    persistence.flush([READING], CONFIG)
    persistence.flush([READING, READING], CONFIG)

    assert sorted(p.name for p in tmp_path.iterdir()) == [CONFIG_FILENAME, DATA_FILENAME]
