from __future__ import annotations

import logging
from collections import deque
from enum import Enum
from typing import Callable, Protocol

from focus_engine.core.config import SessionConfig
from focus_engine.core.dispatch import Dispatch, Job, deferred


logger = logging.getLogger(__name__)


class BlockingService(Protocol):
    """Platform app-blocking collaborator (Screen Time or equivalent)."""

    @property
    def is_authorized(self) -> bool: ...

    @property
    def has_apps_selected(self) -> bool: ...

    def start_session(self, title: str, duration_seconds: int, is_deep_focus: bool) -> None: ...

    def end_session(self, completed: bool) -> None: ...


class BlockingStatus(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    UNAUTHORIZED = "unauthorized"
    NO_APPS_SELECTED = "no_apps_selected"
    FAILED = "failed"

    @property
    def notice(self) -> str | None:
        return BLOCKING_NOTICES.get(self)


BLOCKING_NOTICES = {
    BlockingStatus.UNAUTHORIZED: "Screen Time access required",
    BlockingStatus.NO_APPS_SELECTED: "No apps selected to block",
    BlockingStatus.FAILED: "App blocking failed",
}


class BlockingCoordinator:
    """Starts and stops app blocking in lockstep with focus phases.

    Calls into the service are queued and dispatched one at a time, so a
    start never runs before the previous stop has returned.
    """

    def __init__(
        self,
        service: BlockingService | None,
        dispatch: Dispatch = deferred,
        on_status_changed: Callable[[BlockingStatus], None] | None = None,
    ) -> None:
        self._service = service
        self._dispatch = dispatch
        self._on_status_changed = on_status_changed
        self._status = BlockingStatus.INACTIVE
        self._pending: deque[Job] = deque()
        self._in_flight = False

    @property
    def status(self) -> BlockingStatus:
        return self._status

    @property
    def is_idle(self) -> bool:
        return not self._in_flight and not self._pending

    def on_enter_running_focus(self, config: SessionConfig, duration_seconds: int) -> None:
        if not config.app_blocking_enabled:
            self._enqueue_status(BlockingStatus.INACTIVE)
            return
        service = self._service
        if service is None:
            logger.warning("App blocking requested but no blocking service is configured")
            self._enqueue_status(BlockingStatus.FAILED)
            return
        if not service.is_authorized:
            logger.warning("App blocking skipped: Screen Time access is not authorized")
            self._enqueue_status(BlockingStatus.UNAUTHORIZED)
            return
        if not service.has_apps_selected:
            logger.info("App blocking skipped: no apps or categories selected")
            self._enqueue_status(BlockingStatus.NO_APPS_SELECTED)
            return

        title = config.blocking_title
        is_deep_focus = config.is_deep_focus

        def start() -> None:
            try:
                service.start_session(title, duration_seconds, is_deep_focus)
            except Exception as exc:
                logger.warning("Failed to start app blocking for %r: %s", title, exc)
                self._set_status(BlockingStatus.FAILED)
                return
            logger.info("App blocking started for %r (%ds)", title, duration_seconds)
            self._set_status(BlockingStatus.ACTIVE)

        self._enqueue(start)

    def on_exit_running_focus(self, completed: bool) -> None:
        service = self._service
        if service is None:
            self._enqueue_status(BlockingStatus.INACTIVE)
            return

        def stop() -> None:
            try:
                service.end_session(completed)
            except Exception as exc:
                logger.warning("Failed to stop app blocking: %s", exc)
            self._set_status(BlockingStatus.INACTIVE)

        self._enqueue(stop)

    def _enqueue_status(self, status: BlockingStatus) -> None:
        # Ordered behind any queued start or stop.
        self._enqueue(lambda: self._set_status(status))

    def _enqueue(self, job: Job) -> None:
        self._pending.append(job)
        if not self._in_flight:
            self._dispatch_next()

    def _dispatch_next(self) -> None:
        if not self._pending:
            return
        self._in_flight = True
        job = self._pending.popleft()
        self._dispatch(lambda: self._run(job))

    def _run(self, job: Job) -> None:
        try:
            job()
        finally:
            self._in_flight = False
            self._dispatch_next()

    def _set_status(self, status: BlockingStatus) -> None:
        if status == self._status:
            return
        self._status = status
        if self._on_status_changed is not None:
            self._on_status_changed(status)
