from __future__ import annotations

import itertools
import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum

from focus_engine.core.completion import CompletionDecision
from focus_engine.core.config import FocusMode, SessionConfig


logger = logging.getLogger(__name__)

_runtime_ids = itertools.count(1)


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELED = "canceled"

    @property
    def is_active(self) -> bool:
        return self in {SessionState.RUNNING, SessionState.PAUSED}

    @property
    def is_terminal(self) -> bool:
        return self in {SessionState.COMPLETED, SessionState.CANCELED}


class SessionPhase(str, Enum):
    FOCUS = "focus"
    BREAK = "break"


class TransitionEvent(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    ADJUST = "adjust"
    TICK = "tick"
    FOCUS_FINISHED = "focus_finished"
    BREAK_FINISHED = "break_finished"
    START_BREAK = "start_break"
    START_NEXT_SESSION = "start_next_session"
    SKIP_BREAK = "skip_break"
    END = "end"
    FINISH_RUN = "finish_run"
    RESET = "reset"
    RESTORE = "restore"


@dataclass
class SessionRuntime:
    config: SessionConfig
    phase: SessionPhase
    total_seconds: int
    remaining_seconds: int
    count_up: bool
    sessions_completed_this_run: int
    started_at: float
    last_resumed_at: float | None
    state: SessionState = SessionState.RUNNING
    accumulated_seconds: float = 0.0
    ended_at: float | None = None
    runtime_id: int = 0

    def elapsed_seconds(self, now: float) -> float:
        """Wall-clock time spent running in this phase, pauses excluded."""
        elapsed = self.accumulated_seconds
        if self.last_resumed_at is not None:
            elapsed += max(0.0, now - self.last_resumed_at)
        return elapsed

    def bank_elapsed(self, now: float) -> None:
        self.accumulated_seconds = self.elapsed_seconds(now)
        self.last_resumed_at = None

    def to_dict(self, now: float) -> dict:
        """Serializable form of an in-flight runtime, used to survive relaunch."""
        config = asdict(self.config)
        config["mode"] = self.config.mode.value
        return {
            "config": config,
            "phase": self.phase.value,
            "state": self.state.value,
            "total_seconds": self.total_seconds,
            "remaining_seconds": self.remaining_seconds,
            "count_up": self.count_up,
            "sessions_completed_this_run": self.sessions_completed_this_run,
            "elapsed_seconds": self.elapsed_seconds(now),
        }


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState
    phase: SessionPhase
    mode: FocusMode | None
    total_seconds: int
    remaining_seconds: int
    elapsed_seconds: int
    progress: float
    is_count_up: bool
    sessions_completed_this_run: int


@dataclass(frozen=True)
class Transition:
    event: TransitionEvent
    source: SessionState
    target: SessionState
    source_phase: SessionPhase
    phase: SessionPhase
    runtime: SessionRuntime | None
    previous: SessionRuntime | None = None

    @property
    def leaves_running(self) -> bool:
        return self.source == SessionState.RUNNING and self.target != SessionState.RUNNING

    @property
    def enters_focus(self) -> bool:
        return self.event in {
            TransitionEvent.START,
            TransitionEvent.START_NEXT_SESSION,
            TransitionEvent.SKIP_BREAK,
            TransitionEvent.BREAK_FINISHED,
        }

    @property
    def is_terminal(self) -> bool:
        return self.target.is_terminal and not self.source.is_terminal


class SessionStateMachine:
    """Validates commands and owns the single mutable SessionRuntime.

    Every command returns the resulting Transition, or None when the command
    is not valid for the current state. Nothing here raises.
    """

    def __init__(self) -> None:
        self._runtime: SessionRuntime | None = None
        self._decision: CompletionDecision | None = None
        self._sessions_completed = 0

    @property
    def runtime(self) -> SessionRuntime | None:
        return self._runtime

    @property
    def state(self) -> SessionState:
        return self._runtime.state if self._runtime else SessionState.IDLE

    @property
    def phase(self) -> SessionPhase:
        return self._runtime.phase if self._runtime else SessionPhase.FOCUS

    @property
    def config(self) -> SessionConfig | None:
        return self._runtime.config if self._runtime else None

    @property
    def decision(self) -> CompletionDecision | None:
        return self._decision

    @property
    def sessions_completed_this_run(self) -> int:
        return self._sessions_completed

    def start(self, config: SessionConfig, now: float | None = None) -> Transition | None:
        if self.state != SessionState.IDLE:
            logger.debug("Ignoring start while %s", self.state.value)
            return None
        if now is None:
            now = time.monotonic()
        self._runtime = self._focus_runtime(config, now)
        return self._transition(TransitionEvent.START, SessionState.IDLE, SessionPhase.FOCUS)

    def pause(self, now: float | None = None) -> Transition | None:
        runtime = self._runtime
        if runtime is None or runtime.state != SessionState.RUNNING:
            logger.debug("Ignoring pause while %s", self.state.value)
            return None
        if now is None:
            now = time.monotonic()
        runtime.bank_elapsed(now)
        runtime.state = SessionState.PAUSED
        return self._transition(TransitionEvent.PAUSE, SessionState.RUNNING, runtime.phase)

    def resume(self, now: float | None = None) -> Transition | None:
        runtime = self._runtime
        if runtime is None or runtime.state != SessionState.PAUSED:
            logger.debug("Ignoring resume while %s", self.state.value)
            return None
        if now is None:
            now = time.monotonic()
        runtime.last_resumed_at = now
        runtime.state = SessionState.RUNNING
        return self._transition(TransitionEvent.RESUME, SessionState.PAUSED, runtime.phase)

    def adjust_time(self, delta_seconds: int) -> Transition | None:
        runtime = self._runtime
        if runtime is None or not runtime.state.is_active:
            logger.debug("Ignoring adjust_time while %s", self.state.value)
            return None
        adjusted = runtime.remaining_seconds + int(delta_seconds)
        if not runtime.count_up:
            adjusted = max(0, min(runtime.total_seconds, adjusted))
        runtime.remaining_seconds = adjusted
        return self._transition(TransitionEvent.ADJUST, runtime.state, runtime.phase)

    def tick(self, now: float | None = None) -> Transition | None:
        runtime = self._runtime
        if runtime is None or runtime.state != SessionState.RUNNING:
            return None
        if now is None:
            now = time.monotonic()

        if runtime.count_up:
            runtime.remaining_seconds += 1
            runtime.total_seconds += 1
            return self._transition(TransitionEvent.TICK, SessionState.RUNNING, runtime.phase)

        if runtime.remaining_seconds > 0:
            runtime.remaining_seconds -= 1
        if runtime.remaining_seconds > 0:
            return self._transition(TransitionEvent.TICK, SessionState.RUNNING, runtime.phase)

        if runtime.phase == SessionPhase.BREAK:
            return self._finish_break(runtime, now)
        return self._finish_focus(runtime, now)

    def accept_decision(self, decision: CompletionDecision) -> Transition | None:
        """Store the completion decision; a terminal decision ends the run."""
        runtime = self._runtime
        if runtime is None or runtime.state != SessionState.COMPLETED or runtime.phase != SessionPhase.FOCUS:
            return None
        self._decision = decision
        if not decision.is_terminal:
            return None
        self._runtime = None
        self._decision = None
        return Transition(
            event=TransitionEvent.FINISH_RUN,
            source=SessionState.COMPLETED,
            target=SessionState.IDLE,
            source_phase=SessionPhase.FOCUS,
            phase=SessionPhase.FOCUS,
            runtime=None,
            previous=runtime,
        )

    def start_break(self, now: float | None = None) -> Transition | None:
        runtime = self._runtime
        decision = self._decision
        if runtime is None or runtime.state != SessionState.COMPLETED or decision is None or not decision.offers_break:
            logger.debug("Ignoring start_break while %s", self.state.value)
            return None
        if now is None:
            now = time.monotonic()
        self._decision = None
        self._runtime = SessionRuntime(
            config=runtime.config,
            phase=SessionPhase.BREAK,
            total_seconds=decision.break_seconds,
            remaining_seconds=decision.break_seconds,
            count_up=False,
            sessions_completed_this_run=self._sessions_completed,
            started_at=now,
            last_resumed_at=now,
            runtime_id=next(_runtime_ids),
        )
        return self._transition(TransitionEvent.START_BREAK, SessionState.COMPLETED, SessionPhase.FOCUS, previous=runtime)

    def start_next_session(self, now: float | None = None) -> Transition | None:
        return self._next_focus(TransitionEvent.START_NEXT_SESSION, now)

    def skip_break(self, now: float | None = None) -> Transition | None:
        return self._next_focus(TransitionEvent.SKIP_BREAK, now)

    def end(self, completed: bool = False, now: float | None = None) -> Transition | None:
        runtime = self._runtime
        if runtime is None or not runtime.state.is_active:
            logger.debug("Ignoring end while %s", self.state.value)
            return None
        if now is None:
            now = time.monotonic()
        source = runtime.state
        runtime.bank_elapsed(now)
        runtime.ended_at = now
        runtime.state = SessionState.COMPLETED if completed else SessionState.CANCELED
        self._decision = None
        return self._transition(TransitionEvent.END, source, runtime.phase)

    def reset(self) -> Transition | None:
        runtime = self._runtime
        if runtime is not None and not runtime.state.is_terminal:
            logger.debug("Ignoring reset while %s", runtime.state.value)
            return None
        self._sessions_completed = 0
        self._decision = None
        if runtime is None:
            return None
        self._runtime = None
        return Transition(
            event=TransitionEvent.RESET,
            source=runtime.state,
            target=SessionState.IDLE,
            source_phase=runtime.phase,
            phase=SessionPhase.FOCUS,
            runtime=None,
            previous=runtime,
        )

    def restore(self, data: dict, now: float | None = None, missed_seconds: float = 0.0) -> Transition | None:
        """Rebuild an in-flight runtime from ``SessionRuntime.to_dict`` output.

        ``missed_seconds`` is the wall time spent while the process was gone.
        A running countdown loses it, a running count-up gains it, and a
        paused runtime ignores it. Unreadable payloads return None.
        """
        if self.state != SessionState.IDLE:
            logger.debug("Ignoring restore while %s", self.state.value)
            return None
        try:
            config = SessionConfig(**data["config"])
            phase = SessionPhase(data["phase"])
            state = SessionState(data["state"])
            total = int(data["total_seconds"])
            remaining = int(data["remaining_seconds"])
            count_up = bool(data["count_up"])
            completed = int(data["sessions_completed_this_run"])
            elapsed = float(data["elapsed_seconds"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Discarding unreadable saved session", exc_info=True)
            return None
        if not state.is_active:
            logger.debug("Discarding saved session in state %s", state.value)
            return None
        if now is None:
            now = time.monotonic()

        if state == SessionState.RUNNING:
            missed = int(max(0.0, missed_seconds))
            if count_up:
                remaining += missed
                total += missed
            else:
                remaining = max(0, remaining - missed)
            elapsed += missed

        self._sessions_completed = completed
        self._decision = None
        self._runtime = SessionRuntime(
            config=config,
            phase=phase,
            total_seconds=total,
            remaining_seconds=remaining,
            count_up=count_up,
            sessions_completed_this_run=completed,
            started_at=now - elapsed,
            last_resumed_at=now if state == SessionState.RUNNING else None,
            state=state,
            accumulated_seconds=elapsed,
            runtime_id=next(_runtime_ids),
        )
        logger.info("Restored %s %s session", state.value, phase.value)
        return self._transition(TransitionEvent.RESTORE, SessionState.IDLE, phase)

    def snapshot(self, now: float | None = None) -> SessionSnapshot:
        runtime = self._runtime
        if runtime is None:
            return SessionSnapshot(
                state=SessionState.IDLE,
                phase=SessionPhase.FOCUS,
                mode=None,
                total_seconds=0,
                remaining_seconds=0,
                elapsed_seconds=0,
                progress=0.0,
                is_count_up=False,
                sessions_completed_this_run=self._sessions_completed,
            )
        if now is None:
            now = runtime.ended_at if runtime.ended_at is not None else time.monotonic()
        if runtime.count_up or runtime.total_seconds <= 0:
            progress = 0.0
        else:
            progress = 1.0 - runtime.remaining_seconds / runtime.total_seconds
        return SessionSnapshot(
            state=runtime.state,
            phase=runtime.phase,
            mode=runtime.config.mode,
            total_seconds=runtime.total_seconds,
            remaining_seconds=runtime.remaining_seconds,
            elapsed_seconds=int(runtime.elapsed_seconds(now)),
            progress=max(0.0, min(1.0, progress)),
            is_count_up=runtime.count_up,
            sessions_completed_this_run=self._sessions_completed,
        )

    def _next_focus(self, event: TransitionEvent, now: float | None) -> Transition | None:
        runtime = self._runtime
        if runtime is None:
            return None
        from_completed = (
            runtime.state == SessionState.COMPLETED
            and self._decision is not None
            and self._decision.offers_next_session
        )
        from_break = (
            event == TransitionEvent.SKIP_BREAK
            and runtime.phase == SessionPhase.BREAK
            and runtime.state.is_active
        )
        if not (from_completed or from_break):
            logger.debug("Ignoring %s while %s", event.value, runtime.state.value)
            return None
        if now is None:
            now = time.monotonic()
        source = runtime.state
        if from_break:
            runtime.bank_elapsed(now)
            runtime.ended_at = now
            runtime.state = SessionState.COMPLETED
        self._decision = None
        self._runtime = self._focus_runtime(runtime.config, now)
        return self._transition(event, source, runtime.phase, previous=runtime)

    def _finish_focus(self, runtime: SessionRuntime, now: float) -> Transition:
        runtime.bank_elapsed(now)
        runtime.ended_at = now
        runtime.state = SessionState.COMPLETED
        self._sessions_completed += 1
        runtime.sessions_completed_this_run = self._sessions_completed
        logger.info("Focus phase completed (%d this run)", self._sessions_completed)
        return self._transition(TransitionEvent.FOCUS_FINISHED, SessionState.RUNNING, SessionPhase.FOCUS)

    def _finish_break(self, runtime: SessionRuntime, now: float) -> Transition:
        runtime.bank_elapsed(now)
        runtime.ended_at = now
        runtime.state = SessionState.COMPLETED
        self._runtime = self._focus_runtime(runtime.config, now)
        return self._transition(TransitionEvent.BREAK_FINISHED, SessionState.RUNNING, SessionPhase.BREAK, previous=runtime)

    def _focus_runtime(self, config: SessionConfig, now: float) -> SessionRuntime:
        total = 0 if config.counts_up else config.focus_duration_seconds
        return SessionRuntime(
            config=config,
            phase=SessionPhase.FOCUS,
            total_seconds=total,
            remaining_seconds=total,
            count_up=config.counts_up,
            sessions_completed_this_run=self._sessions_completed,
            started_at=now,
            last_resumed_at=now,
            runtime_id=next(_runtime_ids),
        )

    def _transition(
        self,
        event: TransitionEvent,
        source: SessionState,
        source_phase: SessionPhase,
        previous: SessionRuntime | None = None,
    ) -> Transition:
        runtime = self._runtime
        assert runtime is not None
        return Transition(
            event=event,
            source=source,
            target=runtime.state,
            source_phase=source_phase,
            phase=runtime.phase,
            runtime=runtime,
            previous=previous,
        )
