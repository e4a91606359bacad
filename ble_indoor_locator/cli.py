from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from .anchor_store import AnchorStore
from .calculator import TrilaterationSolver
from .config_manager import ConfigManager
from .exceptions import LocatorError
from .models import LocationResult, Position, Slot
from .scanner import MQTTScanSource
from .session import ScanSession


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def run_session(args):
    config = ConfigManager(args.config)
    anchors = AnchorStore(config).load()
    source = MQTTScanSource(config)
    session = ScanSession.from_config(config, anchors, source)
    topic = config.get_mqtt_config().get("position_topic", "/device/position/{deviceId}")

    def publish_position(position: Position, result: LocationResult):
        logger.info("位置更新: (%.3f, %.3f)", position.x, position.y)
        source.publish(
            topic.format(deviceId=result.device_id), position.to_protocol_string(result.timestamp)
        )

    session.add_position_listener(publish_position)
    session.start_session()

    stopped = threading.Event()

    # graceful shutdown
    def handle_signal(sig, frame):
        stopped.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    stopped.wait()
    session.stop_session()
    return 0


def show_anchors(args):
    config = ConfigManager(args.config)
    store = AnchorStore(config)
    store.load()
    print(store.frame().to_string())
    return 0


def solve_position(args):
    config = ConfigManager(args.config)
    anchors = AnchorStore(config).load()
    distances = {Slot.A: args.d_a, Slot.B: args.d_b, Slot.C: args.d_c}
    position = TrilaterationSolver().solve(distances, anchors)
    if position is None:
        print("no solution")
        return 1
    print(f"x={position.x:.3f} y={position.y:.3f}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog="ble-indoor-locator", description="BLE Indoor Locator CLI")
    parser.add_argument("--config", default=None, help="配置文件路径，默认读取 ./config/config.yaml 或环境变量 BLE_LOCATOR_CONFIG")
    parser.add_argument("--log-level", default="INFO", help="日志级别，默认 INFO")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="运行扫描会话（MQTT 扫描源）")
    p_run.set_defaults(func=run_session)

    p_anchors = sub.add_parser("anchors", help="显示锚点配置")
    p_anchors.set_defaults(func=show_anchors)

    p_solve = sub.add_parser("solve", help="根据三个锚点距离计算位置")
    p_solve.add_argument("d_a", type=float, help="到锚点 A 的距离（米）")
    p_solve.add_argument("d_b", type=float, help="到锚点 B 的距离（米）")
    p_solve.add_argument("d_c", type=float, help="到锚点 C 的距离（米）")
    p_solve.set_defaults(func=solve_position)

    args = parser.parse_args(argv)
    setup_logging(args.log_level)
    try:
        # 无子命令时默认启动扫描会话
        if not hasattr(args, "func"):
            return run_session(args)
        return args.func(args)
    except LocatorError as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
