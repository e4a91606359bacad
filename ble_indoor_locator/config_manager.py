from __future__ import annotations

import copy
import logging
import os
import yaml

from typing import Callable, Any


logger = logging.getLogger(__name__)


def _env_or_default(env_key: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    v = os.environ.get(env_key)
    if v is not None:
        try:
            return cast(v)
        except ValueError:
            logger.warning("环境变量 %s=%r 无法解析，使用默认值 %r", env_key, v, default)
            return default
    return default


def default_config_path() -> str:
    return _env_or_default(
        "BLE_LOCATOR_CONFIG",
        os.path.join(".", "config", "config.yaml"),
    )


class ConfigManager:
    """配置管理类，负责读写YAML配置文件"""

    def __init__(self, config_file: str | None = None):
        self.config_file = config_file or default_config_path()
        self.default_config = {
            "mqtt": {
                "ip": _env_or_default("BLE_MQTT_IP", "localhost"),
                "port": _env_or_default("BLE_MQTT_PORT", 1883, int),
                "scan_topic": _env_or_default("BLE_MQTT_SCAN_TOPIC", "/device/blueTooth/scan/+"),
                "position_topic": _env_or_default(
                    "BLE_MQTT_POSITION_TOPIC", "/device/position/{deviceId}"
                ),
            },
            "rssi_model": {
                "method": _env_or_default("BLE_RSSI_MODEL", "log_distance"),
                "tx_power": _env_or_default("BLE_RSSI_TX_POWER", -59.0, float),
                "path_loss_exponent": _env_or_default("BLE_RSSI_PATH_LOSS", 2.5, float),
                "weak_signal_threshold": -85.0,
                "weak_signal_factor": 1.2,
                "min_distance": 0.1,
                "max_distance": 20.0,
            },
            "kalman": {
                "process_noise": _env_or_default("BLE_KALMAN_Q", 0.1, float),
                "measurement_noise": _env_or_default("BLE_KALMAN_R", 1.0, float),
                "initial_estimate": -60.0,
                "initial_covariance": 1.0,
            },
            "stabilizer": {
                "raw_buffer_size": 10,
                "smoothed_buffer_size": 5,
                "alpha": _env_or_default("BLE_STABILIZER_ALPHA", 0.2, float),
                "update_interval_ms": _env_or_default("BLE_STABILIZER_INTERVAL_MS", 2000, int),
            },
            "scan": {
                "restart_interval_ms": _env_or_default("BLE_SCAN_RESTART_MS", 5000, int),
            },
            "paths": {
                "anchor_db": _env_or_default(
                    "BLE_PATH_ANCHOR_DB", os.path.join(".", "anchor", "anchors.csv")
                ),
            },
        }
        self.load_config()

    def load_config(self) -> None:
        """加载配置文件，如果不存在则创建默认配置"""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r", encoding="utf-8") as f:
                    self.config = yaml.safe_load(f) or {}
                self._merge_default_config()
            else:
                self.config = copy.deepcopy(self.default_config)
                self.save_config()
        except (OSError, yaml.YAMLError) as e:
            # 发生异常时回退到默认配置
            logger.warning("读取配置文件 %s 失败，使用默认配置: %s", self.config_file, e)
            self.config = copy.deepcopy(self.default_config)
            self.save_config()

    def _merge_default_config(self) -> None:
        def merge_dict(default, current):
            for key, value in default.items():
                if key not in current:
                    current[key] = copy.deepcopy(value)
                elif isinstance(value, dict) and isinstance(current[key], dict):
                    merge_dict(value, current[key])

        merge_dict(self.default_config, self.config)

    def save_config(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.config_file) or ".", exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.dump(
                    self.config,
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    indent=2,
                )
        except OSError as e:
            # 保存失败不影响运行
            logger.warning("保存配置文件 %s 失败: %s", self.config_file, e)

    # ---------- Accessors ----------
    def get_mqtt_config(self):
        return self.config["mqtt"]

    def get_rssi_model_config(self):
        return self.config["rssi_model"]

    def get_kalman_config(self):
        return self.config["kalman"]

    def get_stabilizer_config(self):
        return self.config["stabilizer"]

    def get_scan_config(self):
        return self.config["scan"]

    def get_paths(self):
        return self.config.get("paths", {})

    def get_anchor_db_path(self):
        return self.get_paths()["anchor_db"]

    def set_rssi_model_config(self, tx_power: float, path_loss_exponent: float, method: str | None = None):
        self.config["rssi_model"]["tx_power"] = tx_power
        self.config["rssi_model"]["path_loss_exponent"] = path_loss_exponent
        if method is not None:
            self.config["rssi_model"]["method"] = method
        self.save_config()
