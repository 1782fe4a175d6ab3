"""
Frame tick source for the recognition loop.

A frame scheduler hands out one-shot callbacks, like a display refresh:
request_frame() queues a callback for the next tick and cancel_frame() removes
it synchronously. Callbacks always run one after another on a single worker
thread, so two classifications never overlap.
"""

import itertools
import threading
import time
from typing import Callable, Dict


class ThreadFrameScheduler:
    """Runs requested frame callbacks at a fixed rate on a daemon thread."""

    def __init__(self, fps: float = 60.0, name: str = "gestos-frames"):
        self.interval = 1.0 / max(1.0, float(fps))
        self.name = name
        self._pending: Dict[int, Callable[[], None]] = {}
        self._ids = itertools.count(1)
        self._cond = threading.Condition()
        self._thread = None
        self._closed = False

    def request_frame(self, callback: Callable[[], None]) -> int:
        with self._cond:
            if self._closed:
                raise RuntimeError("Frame scheduler is closed")
            handle = next(self._ids)
            self._pending[handle] = callback
            self._ensure_thread()
            self._cond.notify()
            return handle

    def cancel_frame(self, handle: int):
        with self._cond:
            self._pending.pop(handle, None)

    def pending_count(self) -> int:
        with self._cond:
            return len(self._pending)

    def close(self):
        with self._cond:
            self._closed = True
            self._pending.clear()
            self._cond.notify_all()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)

    def _ensure_thread(self):
        if self._thread is None or not self._thread.is_alive():
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()

    def _run(self):
        next_tick = time.monotonic()
        while True:
            with self._cond:
                while not self._pending and not self._closed:
                    self._cond.wait()
                if self._closed:
                    return

            # Align to the refresh rate
            next_tick = max(next_tick + self.interval, time.monotonic())
            delay = next_tick - time.monotonic()
            if delay > 0:
                time.sleep(delay)

            with self._cond:
                due = list(self._pending)

            for handle in due:
                # Re-check each handle so a cancel issued mid-tick still wins
                with self._cond:
                    callback = self._pending.pop(handle, None)
                if callback is None:
                    continue
                try:
                    callback()
                except Exception as e:
                    print(f"⚠ Frame callback {handle} failed: {e}")
