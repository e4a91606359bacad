from __future__ import annotations

import copy
import logging
import threading
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .calculator import DistanceEstimator, DistanceModel, TrilaterationSolver
from .config_manager import ConfigManager
from .exceptions import LocatorError, SessionStartError
from .filters import DistanceStabilizer, KalmanFilter
from .models import (
    AnchorSet,
    KalmanState,
    LocationResult,
    LocationResultStatus,
    Observation,
    Position,
    ScanEvent,
    SessionState,
    Slot,
)
from .scanner import ScanSource
from .scheduler import RepeatingTimer


logger = logging.getLogger(__name__)

PositionListener = Callable[[Position, LocationResult], None]
TimerFactory = Callable[[float, Callable[[], None]], RepeatingTimer]


def _now_str() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


class ScanSession:
    """
    扫描会话：持有设备登记表与滤波状态，驱动 卡尔曼 -> 距离估算 -> 稳定器 -> 三边定位。
    所有登记表写入都在 self.lock 内串行执行；事件按会话代数（generation）过滤，
    停止或重启扫描后旧订阅投递的事件一律丢弃。
    """

    def __init__(
        self,
        anchors: AnchorSet,
        source: ScanSource,
        kalman_filter: Optional[KalmanFilter] = None,
        estimator: Optional[DistanceEstimator] = None,
        stabilizer: Optional[DistanceStabilizer] = None,
        solver: Optional[TrilaterationSolver] = None,
        restart_interval_ms: float = 5000,
        clock: Callable[[], float] = time.monotonic,
        timer_factory: TimerFactory = RepeatingTimer,
    ):
        self.lock = threading.Lock()
        self.lifecycle_lock = threading.Lock()
        self.anchors = anchors
        self.source = source
        self.kalman_filter = kalman_filter or KalmanFilter()
        self.estimator = estimator or DistanceEstimator()
        self.stabilizer = stabilizer or DistanceStabilizer()
        self.solver = solver or TrilaterationSolver()
        self.restart_interval = restart_interval_ms / 1000.0
        self.clock = clock
        self.timer_factory = timer_factory

        self._state = SessionState.IDLE
        self._generation = 0
        self._timer: Optional[RepeatingTimer] = None
        self._kalman_states: Dict[str, KalmanState] = {}
        self._observations: Dict[str, Observation] = {}
        self._position: Optional[Position] = None
        self._listeners: List[PositionListener] = []

    @classmethod
    def from_config(
        cls, config_manager: ConfigManager, anchors: AnchorSet, source: ScanSource, **kwargs
    ) -> "ScanSession":
        rssi_config = config_manager.get_rssi_model_config()
        kalman_config = config_manager.get_kalman_config()
        stabilizer_config = config_manager.get_stabilizer_config()
        scan_config = config_manager.get_scan_config()
        try:
            model = DistanceModel(rssi_config.get("method", "log_distance"))
        except ValueError:
            raise LocatorError(f"未知的距离模型: {rssi_config.get('method')}") from None
        return cls(
            anchors,
            source,
            kalman_filter=KalmanFilter(
                process_noise=float(kalman_config["process_noise"]),
                measurement_noise=float(kalman_config["measurement_noise"]),
                initial_estimate=float(kalman_config["initial_estimate"]),
                initial_covariance=float(kalman_config["initial_covariance"]),
            ),
            estimator=DistanceEstimator(
                model=model,
                path_loss_exponent=float(rssi_config["path_loss_exponent"]),
                weak_signal_threshold=float(rssi_config["weak_signal_threshold"]),
                weak_signal_factor=float(rssi_config["weak_signal_factor"]),
                min_distance=float(rssi_config["min_distance"]),
                max_distance=float(rssi_config["max_distance"]),
            ),
            stabilizer=DistanceStabilizer(
                raw_buffer_size=int(stabilizer_config["raw_buffer_size"]),
                smoothed_buffer_size=int(stabilizer_config["smoothed_buffer_size"]),
                alpha=float(stabilizer_config["alpha"]),
                update_interval_ms=float(stabilizer_config["update_interval_ms"]),
            ),
            restart_interval_ms=float(scan_config["restart_interval_ms"]),
            **kwargs,
        )

    # ---------- Read-only views ----------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def position(self) -> Optional[Position]:
        return self._position

    def observations(self) -> Dict[str, Observation]:
        """登记表快照（深拷贝），调用方修改不影响会话"""
        with self.lock:
            return copy.deepcopy(self._observations)

    def add_position_listener(self, listener: PositionListener) -> None:
        self._listeners.append(listener)

    # ---------- Lifecycle ----------
    # 启动、停止、重启互斥执行（lifecycle_lock），加锁顺序固定为 lifecycle_lock -> lock
    def start_session(self) -> None:
        with self.lifecycle_lock:
            if self._state is SessionState.SCANNING:
                return
            with self.lock:
                generation = self._next_generation()
            try:
                self._subscribe(generation)
            except Exception as e:
                with self.lock:
                    self._next_generation()
                logger.error("扫描会话启动失败: %s", e)
                raise SessionStartError(f"扫描源不可用: {e}") from e

            with self.lock:
                self._state = SessionState.SCANNING
            self._timer = self.timer_factory(self.restart_interval, self.restart_scan)
            self._timer.start()
            logger.info("扫描会话已启动 (generation=%s)", generation)

    def stop_session(self) -> None:
        with self.lifecycle_lock:
            timer, self._timer = self._timer, None
            if self._state is not SessionState.IDLE:
                with self.lock:
                    self._state = SessionState.IDLE
                    self._next_generation()
                self.source.stop()
                logger.info("扫描会话已停止")
        # 在锁外取消：定时线程可能正等待 lifecycle_lock
        if timer is not None:
            timer.cancel()

    def restart_scan(self) -> None:
        """周期重启扫描：拆除旧订阅并重新订阅"""
        with self.lifecycle_lock:
            if self._state is not SessionState.SCANNING:
                return
            with self.lock:
                generation = self._next_generation()
            self.source.stop()
            try:
                self._subscribe(generation)
                logger.debug("扫描已重启 (generation=%s)", generation)
            except Exception as e:
                # 下一个周期再重试
                logger.warning("重启扫描失败: %s", e)

    def reset(self) -> None:
        """清空登记表、滤波状态与位置，仅在空闲状态下允许"""
        with self.lifecycle_lock, self.lock:
            if self._state is not SessionState.IDLE:
                raise LocatorError("扫描中不能重置会话")
            self._kalman_states.clear()
            self._observations.clear()
            self._position = None

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _subscribe(self, generation: int) -> None:
        self.source.start(
            lambda event: self.handle_event(generation, event),
            lambda error: self.handle_error(generation, error),
        )

    # ---------- Event handling ----------
    def handle_error(self, generation: int, error: Exception) -> None:
        if generation != self._generation:
            return
        logger.warning("扫描源报告错误（继续扫描）: %s", error)

    def handle_event(self, generation: int, event: ScanEvent) -> LocationResult:
        with self.lock:
            result = self._process(generation, event)
        if result.is_success and result.position is not None:
            self._notify(result.position, result)
        return result

    def _process(self, generation: int, event: ScanEvent) -> LocationResult:
        timestamp = _now_str()
        if generation != self._generation:
            return LocationResult(
                device_id=event.device_id,
                status=LocationResultStatus.IGNORED,
                message="过期会话的事件",
                timestamp=timestamp,
            )

        anchor = self.anchors.match(event.device_id)
        if anchor is None:
            return LocationResult(
                device_id=event.device_id,
                status=LocationResultStatus.IGNORED,
                message="非锚点设备",
                timestamp=timestamp,
            )

        # 登记表与卡尔曼状态按规范化的匹配键存放，大小写不同的同一设备只保留一份
        key = AnchorSet.normalize_key(event.device_id)
        state = self._kalman_states.get(key)
        if state is None:
            state = self._kalman_states[key] = self.kalman_filter.new_state()
        filtered_rssi = self.kalman_filter.update(state, event.rssi)
        distance = self.estimator.estimate(filtered_rssi, anchor.reference_power)

        observation = self._observations.get(key)
        if observation is None:
            raw_buffer, smoothed_buffer = self.stabilizer.new_buffers()
            observation = Observation(
                device_id=key,
                slot=anchor.slot,
                display_name=event.name or f"Beacon {anchor.slot.value}",
                raw_buffer=raw_buffer,
                smoothed_buffer=smoothed_buffer,
            )
            self._observations[key] = observation
        elif event.name:
            observation.display_name = event.name
        observation.raw_rssi = event.rssi
        observation.filtered_rssi = filtered_rssi
        observation.last_seen = timestamp
        if self.stabilizer.update(observation, distance, self.clock()):
            logger.debug(
                "信标 %s 稳定距离更新: %.2f m", anchor.slot.value, observation.stabilized_distance
            )

        return self._locate(event.device_id, timestamp)

    def _locate(self, device_id: str, timestamp: str) -> LocationResult:
        distances: Dict[Slot, float] = {}
        for observation in self._observations.values():
            if observation.has_valid_distance:
                distances[observation.slot] = observation.stabilized_distance

        result = LocationResult(
            device_id=device_id,
            status=LocationResultStatus.INCOMPLETE_ANCHOR_SET,
            message="锚点距离不完整",
            timestamp=timestamp,
            position=self._position,
            distances=distances,
        )
        if len(distances) < len(self.anchors):
            return result

        position = self.solver.solve(distances, self.anchors)
        if position is None:
            logger.debug("锚点几何退化，保留上一次位置")
            result.status = LocationResultStatus.DEGENERATE_GEOMETRY
            result.message = "锚点几何退化"
            return result

        self._position = position
        result.status = LocationResultStatus.SUCCESS
        result.message = "定位成功"
        result.position = position
        return result

    def _notify(self, position: Position, result: LocationResult) -> None:
        for listener in list(self._listeners):
            try:
                listener(position, result)
            except Exception:
                logger.exception("位置监听器执行出错")
