from __future__ import annotations

import pytest

from ble_indoor_locator.anchor_store import AnchorStore
from ble_indoor_locator.config_manager import ConfigManager
from ble_indoor_locator.exceptions import AnchorConfigError
from ble_indoor_locator.models import Slot


@pytest.fixture
def config(tmp_path) -> ConfigManager:
    return ConfigManager(str(tmp_path / "config.yaml"))


def test_creates_sample_when_missing(tmp_path, config) -> None:
    csv_path = tmp_path / "anchor" / "anchors.csv"
    anchors = AnchorStore(config).load(str(csv_path))

    assert csv_path.exists()
    assert anchors[Slot.B].x == pytest.approx(4.011)
    assert anchors[Slot.C].y == pytest.approx(3.31)
    assert anchors.match("7c:87:ce:2f:d5:b2").slot is Slot.A

    # 再次加载得到相同锚点
    again = AnchorStore(config).load(str(csv_path))
    assert again[Slot.A].match_key == "7C:87:CE:2F:D5:B2"
    assert again[Slot.A].reference_power == pytest.approx(-59.0)


def test_missing_reference_power_uses_tx_power(tmp_path, config) -> None:
    csv_path = tmp_path / "anchors.csv"
    csv_path.write_text(
        "slot,match_key,reference_power,x,y\n"
        "a,AA,-65,0,0\n"
        "B,BB,,4,0\n"
        "C,CC,-70,0,3\n"
    )
    anchors = AnchorStore(config).load(str(csv_path))
    assert anchors[Slot.A].reference_power == pytest.approx(-65.0)
    assert anchors[Slot.B].reference_power == pytest.approx(-59.0)


def test_incomplete_anchor_file_is_rejected(tmp_path, config) -> None:
    csv_path = tmp_path / "anchors.csv"
    csv_path.write_text("slot,match_key,x,y\nA,AA,0,0\nB,BB,4,0\n")
    with pytest.raises(AnchorConfigError):
        AnchorStore(config).load(str(csv_path))


def test_unknown_slot_is_rejected(tmp_path, config) -> None:
    csv_path = tmp_path / "anchors.csv"
    csv_path.write_text("slot,match_key,x,y\nA,AA,0,0\nB,BB,4,0\nD,DD,0,3\n")
    with pytest.raises(AnchorConfigError):
        AnchorStore(config).load(str(csv_path))


def test_missing_column_is_rejected(tmp_path, config) -> None:
    csv_path = tmp_path / "anchors.csv"
    csv_path.write_text("slot,match_key,x\nA,AA,0\n")
    with pytest.raises(AnchorConfigError, match="y"):
        AnchorStore(config).load(str(csv_path))
