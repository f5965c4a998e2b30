from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from customer_merge.errors import ScanCancelled


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    percent: float
    current: int
    total: int
    elapsed_seconds: float
    eta_seconds: float
    message: str = ""


ProgressObserver = Callable[[ProgressEvent], None]


class ProgressTracker:
    """Publishes progress events to observers, throttled by elapsed time.

    The computation loop only calls ``advance``/``update``; observers never see
    more than one event per ``min_interval`` seconds, except the final one.
    """

    def __init__(
        self,
        total: int = 0,
        observers: list[ProgressObserver] | None = None,
        min_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.total = total
        self.current = 0
        self._observers = list(observers or [])
        self._min_interval = min_interval
        self._clock = clock
        self._started = clock()
        self._last_emit: float | None = None
        self._lock = threading.Lock()

    def subscribe(self, observer: ProgressObserver) -> None:
        self._observers.append(observer)

    def set_total(self, total: int) -> None:
        with self._lock:
            self.total = total
            self.current = min(self.current, total)

    def advance(self, amount: int = 1, message: str = "") -> None:
        with self._lock:
            self.current = min(self.total, self.current + amount) if self.total else self.current + amount
            event = self._event_locked(message)
        self._publish(event)

    def update(self, current: int, message: str = "") -> None:
        with self._lock:
            self.current = current
            event = self._event_locked(message)
        self._publish(event)

    def finish(self, message: str = "Complete") -> None:
        with self._lock:
            self.current = self.total
            event = self._event_locked(message, force=True)
        self._publish(event)

    def _event_locked(self, message: str, force: bool = False) -> ProgressEvent | None:
        now = self._clock()
        done = self.total > 0 and self.current >= self.total
        if not force and not done and self._last_emit is not None and now - self._last_emit < self._min_interval:
            return None
        self._last_emit = now
        if self.total:
            percent = self.current / self.total * 100.0
        else:
            percent = 100.0 if force else 0.0
        elapsed = now - self._started
        eta = elapsed / percent * (100.0 - percent) if percent > 0 else 0.0
        return ProgressEvent(
            percent=round(percent, 1),
            current=self.current,
            total=self.total,
            elapsed_seconds=round(elapsed, 3),
            eta_seconds=round(eta, 3),
            message=message,
        )

    def _publish(self, event: ProgressEvent | None) -> None:
        if event is None:
            return
        for observer in self._observers:
            observer(event)


class QueueProgressObserver:
    """Feeds a bounded queue; the oldest pending event is dropped when full."""

    def __init__(self, maxsize: int = 100) -> None:
        self.events: queue.Queue[ProgressEvent] = queue.Queue(maxsize=maxsize)

    def __call__(self, event: ProgressEvent) -> None:
        while True:
            try:
                self.events.put_nowait(event)
                return
            except queue.Full:
                try:
                    self.events.get_nowait()
                except queue.Empty:
                    pass

    def drain(self) -> list[ProgressEvent]:
        drained: list[ProgressEvent] = []
        while True:
            try:
                drained.append(self.events.get_nowait())
            except queue.Empty:
                return drained


class CancellationToken:
    """Cooperative cancellation, checked between blocks."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ScanCancelled("scan cancelled")
