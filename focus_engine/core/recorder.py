from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Protocol

from focus_engine.core.config import FocusMode
from focus_engine.core.dispatch import Dispatch, deferred


logger = logging.getLogger(__name__)


class RecordingService(Protocol):
    """Pattern-learning / gamification sink for finished focus sessions."""

    def record_focus_session(self, mode: str, duration_minutes: int, completed: bool) -> None: ...


@dataclass(frozen=True)
class SessionRecord:
    runtime_id: int
    mode: FocusMode
    actual_elapsed_seconds: int
    completed: bool

    @property
    def duration_minutes(self) -> int:
        return self.actual_elapsed_seconds // 60


class SessionRecorder:
    def __init__(
        self,
        service: RecordingService | None,
        dispatch: Dispatch = deferred,
        on_recorded: Callable[[SessionRecord], None] | None = None,
    ) -> None:
        self._service = service
        self._dispatch = dispatch
        self._on_recorded = on_recorded
        self._last_recorded_id: int | None = None

    def record(self, runtime_id: int, mode: FocusMode, actual_elapsed_seconds: float, completed: bool) -> SessionRecord | None:
        """Emits one record per runtime; repeated calls for the same runtime are ignored."""
        if runtime_id == self._last_recorded_id:
            logger.debug("Session %d already recorded", runtime_id)
            return None
        self._last_recorded_id = runtime_id

        record = SessionRecord(
            runtime_id=runtime_id,
            mode=mode,
            actual_elapsed_seconds=max(0, int(round(actual_elapsed_seconds))),
            completed=completed,
        )
        logger.info(
            "Recording %s session: %ds, completed=%s",
            record.mode.value,
            record.actual_elapsed_seconds,
            record.completed,
        )
        if self._on_recorded is not None:
            self._on_recorded(record)

        service = self._service
        if service is not None:
            self._dispatch(lambda: self._deliver(service, record))
        return record

    @staticmethod
    def _deliver(service: RecordingService, record: SessionRecord) -> None:
        try:
            service.record_focus_session(record.mode.value, record.duration_minutes, record.completed)
        except Exception:
            logger.exception("Failed to record focus session %d", record.runtime_id)
