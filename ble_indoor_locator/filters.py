from __future__ import annotations

from collections import deque
from typing import List, Optional, Sequence

import numpy as np

from .models import INVALID_DISTANCE, KalmanState, Observation


class KalmanFilter:
    """单维卡尔曼滤波（RSSI, dBm），每个设备一份 KalmanState"""

    def __init__(
        self,
        process_noise: float = 0.1,
        measurement_noise: float = 1.0,
        initial_estimate: float = -60.0,
        initial_covariance: float = 1.0,
    ):
        self.process_noise = process_noise  # 过程噪声
        self.measurement_noise = measurement_noise  # 测量噪声
        self.initial_estimate = initial_estimate  # 初始估计（典型 RSSI）
        self.initial_covariance = initial_covariance  # 初始协方差

    def new_state(self) -> KalmanState:
        return KalmanState(
            estimate=self.initial_estimate,
            error_covariance=self.initial_covariance,
            process_noise=self.process_noise,
            measurement_noise=self.measurement_noise,
        )

    @staticmethod
    def update(state: KalmanState, measurement: float) -> float:
        """原地更新 state，返回新的滤波估计"""
        # 预测
        p = state.error_covariance + state.process_noise
        # 更新
        k = p / (p + state.measurement_noise)
        state.estimate = state.estimate + k * (measurement - state.estimate)
        state.error_covariance = (1 - k) * p
        return state.estimate


def iqr_filter(values: Sequence[float]) -> List[float]:
    """
    四分位距去除离群值：
    排序后 q1 取 n//4 位置，q3 取 3n//4 位置，
    保留 [q1 - 1.5*iqr, q3 + 1.5*iqr] 范围内的值（保持原顺序）。
    """
    if len(values) == 0:
        return []
    data = np.sort(np.asarray(values, dtype=float))
    n = len(data)
    q1 = data[n // 4]
    q3 = data[(3 * n) // 4]
    iqr = q3 - q1
    lower, upper = q1 - 1.5 * iqr, q3 + 1.5 * iqr
    return [float(v) for v in values if lower <= v <= upper]


class DistanceStabilizer:
    """
    距离稳定器：滑动平均 -> 低通滤波 -> 四分位距去离群 -> 限频提交。
    stabilized_distance 每个设备每 update_interval 内最多变化一次。
    """

    def __init__(
        self,
        raw_buffer_size: int = 10,
        smoothed_buffer_size: int = 5,
        alpha: float = 0.2,
        update_interval_ms: float = 2000,
    ):
        self.raw_buffer_size = raw_buffer_size
        self.smoothed_buffer_size = smoothed_buffer_size
        self.alpha = alpha
        self.update_interval = update_interval_ms / 1000.0  # 秒

    def new_buffers(self) -> tuple[deque, deque]:
        return deque(maxlen=self.raw_buffer_size), deque(maxlen=self.smoothed_buffer_size)

    def update(self, observation: Observation, distance: float, now: float) -> bool:
        """写入一次瞬时距离；返回本次是否提交了新的稳定距离"""
        observation.current_distance = distance
        if distance == INVALID_DISTANCE:
            # 无效读数不进入缓冲区
            return False

        observation.raw_buffer.append(distance)
        moving_average = self._moving_average(observation)
        smoothed = self._low_pass(moving_average, observation.raw_buffer[-1])
        observation.smoothed_buffer.append(smoothed)

        if not self._gate_open(observation, now):
            return False
        return self.commit(observation, now)

    def commit(self, observation: Observation, now: float) -> bool:
        """对平滑缓冲区去离群后取均值作为稳定距离，并记录提交时间"""
        kept = iqr_filter(list(observation.smoothed_buffer))
        if kept:
            observation.stabilized_distance = float(np.mean(kept))
        observation.last_commit_time = now
        return bool(kept)

    # ---------- stages ----------
    @staticmethod
    def _moving_average(observation: Observation) -> float:
        return float(np.mean(observation.raw_buffer))

    def _low_pass(self, moving_average: float, last_raw: float) -> float:
        """指数低通：滑动平均与最新原始值加权"""
        return self.alpha * moving_average + (1 - self.alpha) * last_raw

    def _gate_open(self, observation: Observation, now: float) -> bool:
        if len(observation.smoothed_buffer) < self.smoothed_buffer_size:
            return False
        last: Optional[float] = observation.last_commit_time
        return last is None or now - last >= self.update_interval
