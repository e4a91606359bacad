from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

import paho.mqtt.client as mqtt
from paho.mqtt.client import MQTTMessage

from .config_manager import ConfigManager
from .exceptions import ScanTransportError
from .models import ScanEvent


logger = logging.getLogger(__name__)

EventCallback = Callable[[ScanEvent], None]
ErrorCallback = Callable[[Exception], None]


class ScanSource(ABC):
    """扫描子系统接口：start 订阅事件流，stop 取消订阅"""

    @abstractmethod
    def start(self, on_event: EventCallback, on_error: ErrorCallback) -> None:
        """开始扫描；扫描源不可用时抛出异常"""

    @abstractmethod
    def stop(self) -> None:
        """停止扫描，之后不再投递事件"""


class MQTTScanSource(ScanSource):
    """从 MQTT 网关主题接收扫描事件"""

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager
        self.lock = threading.Lock()
        self.client: Optional[mqtt.Client] = None
        self._on_event: Optional[EventCallback] = None
        self._on_error: Optional[ErrorCallback] = None

    # ---------- ScanSource ----------
    def start(self, on_event: EventCallback, on_error: ErrorCallback) -> None:
        mqtt_config = self.config_manager.get_mqtt_config()
        client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        client.on_connect = self.on_connect
        client.on_message = self.on_message
        client.on_disconnect = self.on_disconnect
        with self.lock:
            self._on_event = on_event
            self._on_error = on_error
        # 连接失败直接抛出，由会话转换为启动失败
        client.connect(mqtt_config["ip"], int(mqtt_config["port"]), 60)
        logger.info("连接到MQTT服务器 %s:%s", mqtt_config["ip"], mqtt_config["port"])
        client.loop_start()
        self.client = client

    def stop(self) -> None:
        with self.lock:
            self._on_event = None
            self._on_error = None
        client, self.client = self.client, None
        if client is None:
            return
        try:
            client.disconnect()
            client.loop_stop()
            logger.info("MQTT连接已断开")
        except (OSError, RuntimeError) as e:
            logger.error("断开MQTT连接时出错: %s", e)

    def publish(self, topic: str, payload: str) -> bool:
        client = self.client
        if client is None or not client.is_connected():
            return False
        client.publish(topic, payload)
        return True

    # ---------- MQTT handlers ----------
    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error("连接失败，返回码: %s", reason_code)
            self._report(ScanTransportError(f"MQTT连接失败: {reason_code}"))
            return
        logger.info("成功连接到MQTT服务器")
        topic = self.config_manager.get_mqtt_config().get("scan_topic", "/device/blueTooth/scan/+")
        client.subscribe(topic)
        logger.info("已订阅主题: %s", topic)

    def on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            self._report(ScanTransportError(f"MQTT连接中断: {reason_code}"))

    def on_message(self, client, userdata, msg: MQTTMessage):
        try:
            payload = msg.payload.decode("utf-8")
        except UnicodeDecodeError as e:
            self._report(ScanTransportError(f"消息无法解码: {e}"))
            return
        events, rejected = ScanEvent.parse(payload)
        if rejected:
            self._report(ScanTransportError(f"消息中有无法解析的扫描事件: {rejected}"))
        with self.lock:
            on_event = self._on_event
        if on_event is None:
            return
        for event in events:
            on_event(event)

    def _report(self, error: Exception) -> None:
        with self.lock:
            on_error = self._on_error
        if on_error is not None:
            on_error(error)
        else:
            logger.warning("扫描源错误: %s", error)
