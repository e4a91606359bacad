from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Iterable, Iterator, List, Optional, Tuple

from .exceptions import AnchorConfigError

# 无效距离哨兵值：RSSI 为 0 或正数时产生，不参与平均与三边定位
INVALID_DISTANCE = -1.0


class Slot(Enum):
    A = "A"
    B = "B"
    C = "C"


@dataclass(frozen=True)
class Position:
    x: float
    y: float

    def to_protocol_string(self, timestamp: str) -> str:
        """上报格式：x,y,时间戳"""
        return f"{self.x:.3f},{self.y:.3f},{timestamp}"


@dataclass(frozen=True)
class Anchor:
    slot: Slot
    match_key: str
    reference_power: float
    x: float
    y: float

    @property
    def position(self) -> Position:
        return Position(x=self.x, y=self.y)


class AnchorSet:
    """A、B、C 三个锚点，构造时校验；会话期间不可变"""

    def __init__(self, anchors: Iterable[Anchor]):
        by_slot: Dict[Slot, Anchor] = {}
        by_key: Dict[str, Anchor] = {}
        for anchor in anchors:
            if anchor.slot in by_slot:
                raise AnchorConfigError(f"重复的锚点槽位: {anchor.slot.value}")
            key = self.normalize_key(anchor.match_key)
            if not key:
                raise AnchorConfigError(f"锚点 {anchor.slot.value} 缺少匹配键")
            if key in by_key:
                raise AnchorConfigError(f"重复的锚点匹配键: {anchor.match_key}")
            by_slot[anchor.slot] = anchor
            by_key[key] = anchor

        missing = [s.value for s in Slot if s not in by_slot]
        if missing:
            raise AnchorConfigError(f"缺少锚点槽位: {', '.join(missing)}")

        self._by_slot = by_slot
        self._by_key = by_key

    def __getitem__(self, slot: Slot) -> Anchor:
        return self._by_slot[slot]

    def __iter__(self) -> Iterator[Anchor]:
        for slot in Slot:
            yield self._by_slot[slot]

    def __len__(self) -> int:
        return len(self._by_slot)

    @staticmethod
    def normalize_key(key: str) -> str:
        return key.strip().upper()

    def match(self, device_id: str) -> Optional[Anchor]:
        """按匹配键（不区分大小写）查找设备对应的锚点"""
        return self._by_key.get(self.normalize_key(device_id))


@dataclass(frozen=True)
class ScanEvent:
    """
    扫描事件
    网关载荷格式：deviceId,rssi[,name]，多条事件以 ';' 分隔
    """

    device_id: str
    rssi: int
    name: Optional[str] = None

    @classmethod
    def parse_one(cls, item: str) -> "ScanEvent":
        fields = [f.strip() for f in item.split(",", 2)]
        if len(fields) < 2 or not fields[0]:
            raise ValueError(f"扫描事件格式错误: {item!r}")
        try:
            rssi = int(fields[1])
        except ValueError:
            raise ValueError(f"RSSI 不是整数: {item!r}") from None
        name = fields[2] if len(fields) == 3 and fields[2] else None
        return cls(device_id=fields[0], rssi=rssi, name=name)

    @classmethod
    def parse(cls, data_str: str) -> Tuple[List["ScanEvent"], List[str]]:
        """解析载荷，返回 (有效事件, 无法解析的条目)"""
        events: List[ScanEvent] = []
        rejected: List[str] = []
        for item in data_str.split(";"):
            if not item.strip():
                continue
            try:
                events.append(cls.parse_one(item))
            except ValueError:
                rejected.append(item)
        return events, rejected


@dataclass
class KalmanState:
    estimate: float = -60.0
    error_covariance: float = 1.0
    process_noise: float = 0.1
    measurement_noise: float = 1.0


@dataclass
class Observation:
    """单个信标设备的观测记录，按规范化的匹配键存于会话登记表"""

    device_id: str
    slot: Slot
    display_name: str
    raw_rssi: int = 0
    filtered_rssi: float = 0.0
    current_distance: float = INVALID_DISTANCE
    stabilized_distance: Optional[float] = None
    raw_buffer: Deque[float] = field(default_factory=lambda: deque(maxlen=10))
    smoothed_buffer: Deque[float] = field(default_factory=lambda: deque(maxlen=5))
    last_commit_time: Optional[float] = None
    last_seen: Optional[str] = None

    @property
    def has_valid_distance(self) -> bool:
        return (
            self.stabilized_distance is not None
            and self.stabilized_distance != INVALID_DISTANCE
        )


class SessionState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"


class LocationResultStatus(Enum):
    SUCCESS = "success"
    DEGENERATE_GEOMETRY = "degenerate_geometry"
    INCOMPLETE_ANCHOR_SET = "incomplete_anchor_set"
    IGNORED = "ignored"


@dataclass
class LocationResult:
    """
    单次扫描事件的处理结果
    """

    device_id: str
    status: LocationResultStatus
    message: str
    timestamp: str

    position: Optional[Position] = None
    distances: Dict[Slot, float] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status is LocationResultStatus.SUCCESS
