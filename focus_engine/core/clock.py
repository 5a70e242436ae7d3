from __future__ import annotations

from typing import Callable

from PyQt6.QtCore import QElapsedTimer, QObject, QTimer, Qt


def next_delay_ms(elapsed_ms: int, tick_number: int, interval_ms: int = 1000) -> int:
    """Delay until tick `tick_number` is due on a fixed cadence from the anchor.

    Overruns shorten the next wait instead of pushing every later tick back.
    """
    return max(0, tick_number * interval_ms - elapsed_ms)


class SessionClock(QObject):
    """Single ticking timer; the only source of elapsed time for a session."""

    def __init__(
        self,
        on_tick: Callable[[], None],
        interval_ms: int = 1000,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        if interval_ms <= 0:
            raise ValueError("Tick interval must be positive")
        self._on_tick = on_tick
        self._interval_ms = interval_ms
        self._ticks = 0
        self._anchor = QElapsedTimer()
        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.setTimerType(Qt.TimerType.PreciseTimer)
        self._timer.timeout.connect(self._fire)

    @property
    def is_running(self) -> bool:
        return self._anchor.isValid()

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def ticks(self) -> int:
        return self._ticks

    def start(self) -> None:
        if self.is_running:
            return
        self._ticks = 0
        self._anchor.start()
        self._arm()

    def stop(self) -> None:
        if not self.is_running:
            return
        self._timer.stop()
        self._anchor.invalidate()

    def _arm(self) -> None:
        self._timer.start(next_delay_ms(self._anchor.elapsed(), self._ticks + 1, self._interval_ms))

    def _fire(self) -> None:
        if not self.is_running:
            return
        self._ticks += 1
        self._on_tick()
        # The callback may have stopped the clock (completion, cancel).
        if self.is_running and not self._timer.isActive():
            self._arm()
