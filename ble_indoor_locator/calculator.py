from __future__ import annotations

import math
from enum import Enum
from typing import Mapping, Optional

import numpy as np

from .models import INVALID_DISTANCE, AnchorSet, Position, Slot


class DistanceModel(Enum):
    LOG_DISTANCE = "log_distance"


class DistanceEstimator:
    """基于RSSI的距离估算（单位: 米）"""

    def __init__(
        self,
        model: DistanceModel = DistanceModel.LOG_DISTANCE,
        path_loss_exponent: float = 2.5,
        weak_signal_threshold: float = -85.0,
        weak_signal_factor: float = 1.2,
        min_distance: float = 0.1,
        max_distance: float = 20.0,
    ):
        self.model = model
        # 路径损耗指数（室内环境）
        self.path_loss_exponent = path_loss_exponent
        # 弱信号修正：低于阈值的距离系统性偏小
        self.weak_signal_threshold = weak_signal_threshold
        self.weak_signal_factor = weak_signal_factor
        self.min_distance = min_distance
        self.max_distance = max_distance

    def estimate(self, filtered_rssi: float, reference_power: float) -> float:
        """
        filtered_rssi: 滤波后的 RSSI (dBm)
        reference_power: 信标 1 米处的 RSSI (dBm)
        返回距离，或无效哨兵 -1.0
        """
        return self._log_distance(filtered_rssi, reference_power)

    def _log_distance(self, rssi: float, reference_power: float) -> float:
        # 现实环境下 RSSI 必为负数
        if rssi >= 0:
            return INVALID_DISTANCE
        exponent = (abs(rssi) - abs(reference_power)) / (10.0 * self.path_loss_exponent)
        distance = math.pow(10, exponent)
        if rssi < self.weak_signal_threshold:
            distance *= self.weak_signal_factor
        return min(max(distance, self.min_distance), self.max_distance)


class TrilaterationSolver:
    """线性三边定位（二维），以 A 为参考锚点，克莱姆法则求解"""

    def __init__(self, det_epsilon: float = 1e-4):
        self.det_epsilon = det_epsilon

    def solve(self, distances: Mapping[Slot, float], anchors: AnchorSet) -> Optional[Position]:
        """
        distances: {Slot.A: dA, Slot.B: dB, Slot.C: dC}
        返回: Position；锚点几何退化（近似共线）时返回 None
        """
        a, b, c = anchors[Slot.A], anchors[Slot.B], anchors[Slot.C]
        d_a, d_b, d_c = distances[Slot.A], distances[Slot.B], distances[Slot.C]

        # 构造 m 矩阵和 v 向量
        m = np.array(
            [
                [2 * (b.x - a.x), 2 * (b.y - a.y)],
                [2 * (c.x - a.x), 2 * (c.y - a.y)],
            ]
        )
        v = np.array(
            [
                d_a**2 - d_b**2 - a.x**2 + b.x**2 - a.y**2 + b.y**2,
                d_a**2 - d_c**2 - a.x**2 + c.x**2 - a.y**2 + c.y**2,
            ]
        )

        det = m[0, 0] * m[1, 1] - m[0, 1] * m[1, 0]
        if abs(det) < self.det_epsilon:
            return None

        x = (m[1, 1] * v[0] - m[0, 1] * v[1]) / det
        y = (-m[1, 0] * v[0] + m[0, 0] * v[1]) / det
        if not (math.isfinite(x) and math.isfinite(y)):
            return None
        return Position(x=float(x), y=float(y))
