from __future__ import annotations

import os
from typing import Optional, cast

import pandas as pd

from .config_manager import ConfigManager
from .exceptions import AnchorConfigError
from .models import Anchor, AnchorSet, Slot

COLUMNS = ["slot", "match_key", "reference_power", "x", "y"]

SAMPLE_ANCHORS = [
    {"slot": "A", "match_key": "7C:87:CE:2F:D5:B2", "reference_power": -59.0, "x": 0.0, "y": 0.0},
    {"slot": "B", "match_key": "6B:96:94:E6:F8:8B", "reference_power": -59.0, "x": 4.011, "y": 0.0},
    {"slot": "C", "match_key": "08:12:87:21:E3:B3", "reference_power": -59.0, "x": 0.0, "y": 3.31},
]


class AnchorStore:
    """管理锚点数据的存储与访问（pandas + CSV）"""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        # 使用 DataFrame 管理，索引为 slot
        self._df = pd.DataFrame(columns=COLUMNS[1:])
        self._df.index.name = "slot"
        self._config = config_manager or ConfigManager()

    # ---- Utils ----
    def _normalize_df(self, df: pd.DataFrame) -> pd.DataFrame:
        for col in ["slot", "match_key", "x", "y"]:
            if col not in df.columns:
                raise AnchorConfigError(f"CSV 文件缺少 '{col}' 列")
        default_power = float(self._config.get_rssi_model_config().get("tx_power", -59.0))
        if "reference_power" not in df.columns:
            df["reference_power"] = default_power
        # 参考功率为空时使用配置中的 tx_power
        df["reference_power"] = pd.to_numeric(df["reference_power"], errors="coerce").fillna(
            default_power
        )
        for col in ["x", "y"]:
            df[col] = pd.to_numeric(df[col], errors="coerce")
        if df[["x", "y"]].isna().any().any():
            raise AnchorConfigError("锚点坐标缺失或不是数值")

        df["slot"] = df["slot"].astype(str).str.strip().str.upper()
        df["match_key"] = df["match_key"].astype(str).str.strip()
        df = df[COLUMNS].set_index("slot")
        df = df.astype({"reference_power": "float64", "x": "float64", "y": "float64"})
        return df.sort_index()

    # ---- Load/Save ----
    def load(self, anchor_file_path: Optional[str] = None) -> AnchorSet:
        csv_path = anchor_file_path or self._config.get_anchor_db_path()
        if not os.path.exists(csv_path):
            self._create_sample(csv_path)
            return self.anchor_set()
        try:
            df = pd.read_csv(csv_path, dtype={"slot": str, "match_key": str})
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise AnchorConfigError(f"无法读取锚点文件 {csv_path}: {e}") from e
        self._df = self._normalize_df(df)
        return self.anchor_set()

    def _create_sample(self, anchor_file_path: Optional[str] = None):
        csv_path = anchor_file_path or self._config.get_anchor_db_path()
        self._df = self._normalize_df(pd.DataFrame(SAMPLE_ANCHORS))
        self.save(csv_path)

    def save(self, anchor_file_path: Optional[str] = None):
        csv_path = anchor_file_path or self._config.get_anchor_db_path()
        os.makedirs(os.path.dirname(csv_path) or ".", exist_ok=True)
        # 保存为 CSV（将索引写为列 slot）
        self._df.to_csv(csv_path, index=True, index_label="slot", encoding="utf-8")

    # ---- Accessors ----
    def frame(self) -> pd.DataFrame:
        return self._df.copy()

    def anchor_set(self) -> AnchorSet:
        anchors = []
        for slot_key, row in self._df.iterrows():
            row_s = cast(pd.Series, row)
            try:
                slot = Slot(str(slot_key))
            except ValueError:
                raise AnchorConfigError(f"未知的锚点槽位: {slot_key}") from None
            anchors.append(
                Anchor(
                    slot=slot,
                    match_key=str(row_s.at["match_key"]),
                    reference_power=float(row_s.at["reference_power"]),
                    x=float(row_s.at["x"]),
                    y=float(row_s.at["y"]),
                )
            )
        return AnchorSet(anchors)
