from __future__ import annotations

import threading

import pytest

from ble_indoor_locator.models import Anchor, AnchorSet, Slot
from ble_indoor_locator.scanner import ScanSource


class FakeScanSource(ScanSource):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.starts = 0
        self.stops = 0
        self.callbacks = []

    def start(self, on_event, on_error):
        if self.fail:
            raise ConnectionRefusedError("broker unavailable")
        self.starts += 1
        self.callbacks.append((on_event, on_error))

    def stop(self):
        self.stops += 1

    def emit(self, event, index=-1):
        on_event, _ = self.callbacks[index]
        on_event(event)

    def fail_with(self, error, index=-1):
        _, on_error = self.callbacks[index]
        on_error(error)


class BlockingScanSource(FakeScanSource):
    """start() 阻塞直到 release 被设置，用于构造并发的启动与停止"""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def start(self, on_event, on_error):
        super().start(on_event, on_error)
        self.entered.set()
        self.release.wait(5)


class FakeTimer:
    def __init__(self, interval, callback):
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.callback()


class ManualClock:
    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def anchors() -> AnchorSet:
    return AnchorSet(
        [
            Anchor(Slot.A, "AA:AA", -59.0, 0.0, 0.0),
            Anchor(Slot.B, "BB:BB", -59.0, 4.0, 0.0),
            Anchor(Slot.C, "CC:CC", -59.0, 0.0, 3.0),
        ]
    )


@pytest.fixture
def colinear_anchors() -> AnchorSet:
    return AnchorSet(
        [
            Anchor(Slot.A, "AA:AA", -59.0, 0.0, 0.0),
            Anchor(Slot.B, "BB:BB", -59.0, 1.0, 0.0),
            Anchor(Slot.C, "CC:CC", -59.0, 2.0, 0.0),
        ]
    )


@pytest.fixture
def source() -> FakeScanSource:
    return FakeScanSource()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def timers():
    created = []

    def factory(interval, callback):
        timer = FakeTimer(interval, callback)
        created.append(timer)
        return timer

    factory.created = created
    return factory
