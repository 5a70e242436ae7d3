from __future__ import annotations

import logging
import time
from typing import Protocol

from PyQt6.QtCore import QObject, pyqtSignal

from focus_engine.core.blocking import BlockingCoordinator, BlockingService, BlockingStatus
from focus_engine.core.clock import SessionClock
from focus_engine.core.completion import CompletionDecision, CompletionPolicy
from focus_engine.core.config import EngineSettings, SessionConfig
from focus_engine.core.dispatch import Dispatch, deferred
from focus_engine.core.recorder import RecordingService, SessionRecorder
from focus_engine.core.timer import (
    SessionPhase,
    SessionSnapshot,
    SessionState,
    SessionStateMachine,
    Transition,
    TransitionEvent,
)
from focus_engine.data.storage import Storage


logger = logging.getLogger(__name__)


class TaskService(Protocol):
    def complete_task(self, task_id: str) -> None: ...


class SessionStore(Protocol):
    def save_active_session(self, payload: dict) -> None: ...

    def load_active_session(self) -> dict | None: ...

    def clear_active_session(self) -> None: ...


class FocusSessionEngine(QObject):
    """Single source of truth for the active focus session.

    The UI issues commands and renders from `state_changed`; blocking and
    recording only ever react to transitions.
    """

    state_changed = pyqtSignal(object)
    completion_ready = pyqtSignal(object)
    task_prompt_requested = pyqtSignal(str)
    task_prompt_answered = pyqtSignal(str, bool)
    blocking_status_changed = pyqtSignal(object)
    session_recorded = pyqtSignal(object)

    def __init__(
        self,
        blocking: BlockingService | None = None,
        recording: RecordingService | None = None,
        tasks: TaskService | None = None,
        store: SessionStore | None = None,
        settings: EngineSettings | None = None,
        dispatch: Dispatch = deferred,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self.settings = settings or EngineSettings()
        self._dispatch = dispatch
        self._tasks = tasks
        self._store = store
        self._machine = SessionStateMachine()
        self._policy = CompletionPolicy()
        self._clock = SessionClock(self._on_clock_tick, parent=self)
        self._blocking = BlockingCoordinator(blocking, dispatch, on_status_changed=self.blocking_status_changed.emit)
        self._recorder = SessionRecorder(recording, dispatch, on_recorded=self.session_recorded.emit)
        self._pending_prompt: str | None = None

    @property
    def state(self) -> SessionState:
        return self._machine.state

    @property
    def phase(self) -> SessionPhase:
        return self._machine.phase

    @property
    def decision(self) -> CompletionDecision | None:
        return self._machine.decision

    @property
    def blocking_status(self) -> BlockingStatus:
        return self._blocking.status

    @property
    def clock(self) -> SessionClock:
        return self._clock

    def snapshot(self, now: float | None = None) -> SessionSnapshot:
        return self._machine.snapshot(now)

    def start(self, config: SessionConfig | None = None, now: float | None = None) -> bool:
        if config is None:
            config = SessionConfig.for_mode(self.settings.default_mode)
        return self._apply(self._machine.start(config, now), now)

    def pause(self, now: float | None = None) -> bool:
        return self._apply(self._machine.pause(now), now)

    def resume(self, now: float | None = None) -> bool:
        return self._apply(self._machine.resume(now), now)

    def toggle_pause(self, now: float | None = None) -> bool:
        if self.state == SessionState.RUNNING:
            return self.pause(now)
        return self.resume(now)

    def adjust_time(self, delta_seconds: int) -> bool:
        return self._apply(self._machine.adjust_time(delta_seconds), None)

    def tick(self, now: float | None = None) -> bool:
        return self._apply(self._machine.tick(now), now)

    def start_break(self, now: float | None = None) -> bool:
        return self._apply(self._machine.start_break(now), now)

    def start_next_session(self, now: float | None = None) -> bool:
        return self._apply(self._machine.start_next_session(now), now)

    def skip_break(self, now: float | None = None) -> bool:
        return self._apply(self._machine.skip_break(now), now)

    def end(self, completed: bool = False, now: float | None = None) -> bool:
        return self._apply(self._machine.end(completed, now), now)

    def reset(self) -> bool:
        self._pending_prompt = None
        return self._apply(self._machine.reset(), None)

    def restore(self, now: float | None = None, wall_now: float | None = None) -> bool:
        """Resume the session that was in flight when the process last exited.

        Blocking is not re-requested; the platform session outlives the app.
        """
        store = self._store
        if store is None or self.state != SessionState.IDLE:
            return False
        payload = store.load_active_session()
        if payload is None:
            return False
        if wall_now is None:
            wall_now = time.time()
        saved_at = payload.get("saved_at", wall_now)
        missed = max(0.0, wall_now - saved_at) if isinstance(saved_at, (int, float)) else 0.0
        transition = self._machine.restore(payload, now, missed_seconds=missed)
        if transition is None:
            store.clear_active_session()
            return False
        return self._apply(transition, now)

    def answer_task_prompt(self, completed: bool) -> bool:
        task_id = self._pending_prompt
        if task_id is None:
            return False
        self._pending_prompt = None
        self.task_prompt_answered.emit(task_id, completed)
        tasks = self._tasks
        if completed and tasks is not None:
            self._dispatch(lambda: self._complete_task(tasks, task_id))
        return True

    def _on_clock_tick(self) -> None:
        self.tick(time.monotonic())

    def _apply(self, transition: Transition | None, now: float | None) -> bool:
        if transition is None:
            return False

        if transition.leaves_running:
            self._clock.stop()

        runtime = transition.runtime
        if transition.event in {TransitionEvent.FOCUS_FINISHED, TransitionEvent.END}:
            self._blocking.on_exit_running_focus(completed=transition.target == SessionState.COMPLETED)
        elif transition.enters_focus and runtime is not None:
            self._blocking.on_enter_running_focus(runtime.config, runtime.total_seconds)

        if transition.is_terminal and transition.source_phase == SessionPhase.FOCUS and runtime is not None:
            ended_at = runtime.ended_at if runtime.ended_at is not None else time.monotonic()
            self._recorder.record(
                runtime.runtime_id,
                runtime.config.mode,
                runtime.elapsed_seconds(ended_at),
                completed=transition.target == SessionState.COMPLETED,
            )

        if transition.target == SessionState.RUNNING:
            self._clock.start()

        self._persist(now)

        if transition.event in {TransitionEvent.START, TransitionEvent.END}:
            logger.info("Session %s -> %s", transition.source.value, transition.target.value)
        self.state_changed.emit(self._machine.snapshot(now))

        if transition.event == TransitionEvent.FOCUS_FINISHED and runtime is not None:
            self._decide(runtime.config, now)
        return True

    def _decide(self, config: SessionConfig, now: float | None) -> None:
        decision = self._policy.decide(config, self._machine.sessions_completed_this_run)
        follow_up = self._machine.accept_decision(decision)
        self.completion_ready.emit(decision)
        if decision.prompt_task_completion and decision.linked_task_id is not None:
            self._pending_prompt = decision.linked_task_id
            self.task_prompt_requested.emit(decision.linked_task_id)
        if follow_up is not None:
            self.state_changed.emit(self._machine.snapshot(now))

    def _persist(self, now: float | None) -> None:
        store = self._store
        if store is None:
            return
        runtime = self._machine.runtime
        try:
            if runtime is not None and runtime.state.is_active:
                payload = runtime.to_dict(now if now is not None else time.monotonic())
                payload["saved_at"] = time.time()
                store.save_active_session(payload)
            else:
                store.clear_active_session()
        except Exception:
            logger.warning("Failed to persist the active session", exc_info=True)

    @staticmethod
    def _complete_task(tasks: TaskService, task_id: str) -> None:
        try:
            tasks.complete_task(task_id)
        except Exception:
            logger.exception("Failed to mark task %s completed", task_id)


def create_engine(
    storage: Storage,
    blocking: BlockingService | None = None,
    tasks: TaskService | None = None,
    dispatch: Dispatch = deferred,
    parent: QObject | None = None,
) -> FocusSessionEngine:
    """Wires an engine to the SQLite store for settings, session records and
    the in-flight session."""
    return FocusSessionEngine(
        blocking=blocking,
        recording=storage,
        tasks=tasks,
        store=storage,
        settings=storage.load_engine_settings(),
        dispatch=dispatch,
        parent=parent,
    )
