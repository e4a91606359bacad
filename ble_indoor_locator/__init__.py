"""BLE Indoor Locator package.

This package provides:
- ConfigManager: YAML-based configuration management
- AnchorStore: anchor database (CSV) for the three beacons A/B/C
- KalmanFilter / DistanceStabilizer: per-beacon RSSI and distance filtering
- DistanceEstimator / TrilaterationSolver: RSSI -> distance -> 2-D position
- ScanSession: scan-event pipeline and position publishing
- MQTTScanSource: MQTT ingestion of scan events
"""

from .config_manager import ConfigManager
from .anchor_store import AnchorStore
from .calculator import DistanceEstimator, DistanceModel, TrilaterationSolver
from .filters import DistanceStabilizer, KalmanFilter
from .scanner import MQTTScanSource, ScanSource
from .session import ScanSession

__all__ = [
    "ConfigManager",
    "AnchorStore",
    "DistanceEstimator",
    "DistanceModel",
    "TrilaterationSolver",
    "DistanceStabilizer",
    "KalmanFilter",
    "MQTTScanSource",
    "ScanSource",
    "ScanSession",
]
