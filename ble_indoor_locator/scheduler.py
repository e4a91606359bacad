from __future__ import annotations

import logging
import threading
from typing import Callable, Optional


logger = logging.getLogger(__name__)


class RepeatingTimer:
    """周期任务：在独立守护线程中每 interval 秒调用一次 callback，可取消"""

    def __init__(self, interval: float, callback: Callable[[], None], name: str = "repeating-timer"):
        self.interval = interval
        self.callback = callback
        self.name = name
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopped.is_set()

    def start(self) -> None:
        if self.is_running:
            return
        self._stopped = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stopped,), name=self.name, daemon=True
        )
        self._thread.start()

    def cancel(self) -> None:
        self._stopped.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval + 1.0)

    def _run(self, stopped: threading.Event) -> None:
        while not stopped.wait(self.interval):
            try:
                self.callback()
            except Exception:
                # 单次回调失败不终止周期任务
                logger.exception("周期任务 %s 执行出错", self.name)
