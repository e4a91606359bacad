from __future__ import annotations

import math

import pytest

from ble_indoor_locator.calculator import DistanceEstimator, DistanceModel, TrilaterationSolver
from ble_indoor_locator.models import INVALID_DISTANCE, Slot


@pytest.fixture
def estimator() -> DistanceEstimator:
    return DistanceEstimator()


@pytest.mark.parametrize("rssi", [0.0, 3.0, 40.0])
def test_non_negative_rssi_is_invalid(estimator, rssi) -> None:
    assert estimator.estimate(rssi, -59.0) == INVALID_DISTANCE


def test_reference_power_gives_one_metre(estimator) -> None:
    assert estimator.estimate(-59.0, -59.0) == pytest.approx(1.0)


def test_log_distance_model(estimator) -> None:
    # (84 - 59) / 25 = 1
    assert estimator.estimate(-84.0, -59.0) == pytest.approx(10.0)


def test_weak_signal_correction(estimator) -> None:
    expected = math.pow(10, (86 - 59) / 25) * 1.2
    assert estimator.estimate(-86.0, -59.0) == pytest.approx(expected)


def test_distance_is_clamped(estimator) -> None:
    assert estimator.estimate(-20.0, -59.0) == pytest.approx(0.1)
    assert estimator.estimate(-110.0, -59.0) == pytest.approx(20.0)


def test_distance_grows_as_signal_weakens(estimator) -> None:
    distances = [estimator.estimate(float(rssi), -59.0) for rssi in range(-20, -121, -1)]
    assert all(b >= a for a, b in zip(distances, distances[1:]))
    assert all(0.1 <= d <= 20.0 for d in distances)


@pytest.mark.parametrize("rssi", [-0.5, -30.0, -100.0, -127.0])
@pytest.mark.parametrize("reference_power", [-40.0, -59.0, -80.0])
def test_estimate_stays_within_bounds(estimator, rssi, reference_power) -> None:
    d = estimator.estimate(rssi, reference_power)
    assert 0.1 <= d <= 20.0


def test_log_distance_is_the_only_model() -> None:
    assert [m.value for m in DistanceModel] == ["log_distance"]
    with pytest.raises(ValueError):
        DistanceModel("ratio")


def test_trilateration_round_trip(anchors) -> None:
    true_x, true_y = 2.0, 1.0
    distances = {
        anchor.slot: math.hypot(true_x - anchor.x, true_y - anchor.y) for anchor in anchors
    }
    position = TrilaterationSolver().solve(distances, anchors)
    assert position is not None
    assert position.x == pytest.approx(true_x, abs=1e-6)
    assert position.y == pytest.approx(true_y, abs=1e-6)


@pytest.mark.parametrize("d", [(1.0, 1.0, 1.0), (0.5, 2.0, 7.0), (0.0, 0.0, 0.0)])
def test_colinear_anchors_have_no_solution(colinear_anchors, d) -> None:
    distances = dict(zip((Slot.A, Slot.B, Slot.C), d))
    assert TrilaterationSolver().solve(distances, colinear_anchors) is None
