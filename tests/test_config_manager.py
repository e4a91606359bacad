from __future__ import annotations

import yaml

from ble_indoor_locator.config_manager import ConfigManager


def test_creates_default_config(tmp_path) -> None:
    path = tmp_path / "config" / "config.yaml"
    config = ConfigManager(str(path))

    assert path.exists()
    assert config.get_stabilizer_config()["update_interval_ms"] == 2000
    assert config.get_scan_config()["restart_interval_ms"] == 5000
    assert config.get_kalman_config()["process_noise"] == 0.1
    assert config.get_rssi_model_config()["method"] == "log_distance"


def test_merges_missing_keys(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({"mqtt": {"ip": "broker.local"}, "kalman": {"process_noise": 0.5}}))

    config = ConfigManager(str(path))
    assert config.get_mqtt_config()["ip"] == "broker.local"
    assert config.get_mqtt_config()["port"] == 1883
    assert config.get_kalman_config()["process_noise"] == 0.5
    assert config.get_kalman_config()["measurement_noise"] == 1.0


def test_env_overrides_defaults(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("BLE_MQTT_PORT", "1884")
    monkeypatch.setenv("BLE_STABILIZER_INTERVAL_MS", "not-a-number")
    config = ConfigManager(str(tmp_path / "config.yaml"))

    assert config.get_mqtt_config()["port"] == 1884
    assert config.get_stabilizer_config()["update_interval_ms"] == 2000


def test_invalid_yaml_falls_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("mqtt: [unclosed")
    config = ConfigManager(str(path))
    assert config.get_mqtt_config()["ip"] == "localhost"


def test_set_rssi_model_config_persists(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    config = ConfigManager(str(path))
    config.set_rssi_model_config(-62.0, 3.0)

    reloaded = ConfigManager(str(path))
    assert reloaded.get_rssi_model_config()["tx_power"] == -62.0
    assert reloaded.get_rssi_model_config()["path_loss_exponent"] == 3.0
