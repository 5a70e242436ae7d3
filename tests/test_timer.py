from focus_engine.core.completion import CompletionPolicy
from focus_engine.core.config import FocusMode, SessionConfig
from focus_engine.core.timer import SessionPhase, SessionState, SessionStateMachine, TransitionEvent


def pomodoro(**overrides) -> SessionConfig:
    return SessionConfig.for_mode(FocusMode.POMODORO, **overrides)


def run_ticks(machine: SessionStateMachine, count: int, start: float = 0.0) -> list:
    return [machine.tick(now=start + i + 1) for i in range(count)]


def test_start_from_idle_sets_full_countdown() -> None:
    machine = SessionStateMachine()
    transition = machine.start(pomodoro(), now=0.0)

    assert transition is not None
    assert transition.event == TransitionEvent.START
    assert machine.state == SessionState.RUNNING
    assert machine.phase == SessionPhase.FOCUS
    assert machine.runtime.remaining_seconds == 1500


def test_start_flow_counts_up_from_zero() -> None:
    machine = SessionStateMachine()
    machine.start(SessionConfig.for_mode(FocusMode.FLOW), now=0.0)

    assert machine.runtime.remaining_seconds == 0
    assert machine.runtime.count_up is True


def test_start_rejected_unless_idle() -> None:
    machine = SessionStateMachine()
    machine.start(pomodoro(), now=0.0)

    assert machine.start(pomodoro(focus_duration_seconds=60), now=1.0) is None
    assert machine.runtime.total_seconds == 1500


def test_pause_and_resume_preconditions_are_silent() -> None:
    machine = SessionStateMachine()

    assert machine.pause(now=0.0) is None
    assert machine.resume(now=0.0) is None

    machine.start(pomodoro(), now=0.0)
    assert machine.resume(now=1.0) is None
    assert machine.pause(now=1.0) is not None
    assert machine.pause(now=2.0) is None
    assert machine.state == SessionState.PAUSED


def test_pause_resume_keeps_remaining_stable() -> None:
    machine = SessionStateMachine()
    machine.start(pomodoro(), now=0.0)
    run_ticks(machine, 10)

    machine.pause(now=10.0)
    machine.resume(now=10.0)

    assert machine.runtime.remaining_seconds == 1490


def test_ticks_while_paused_are_ignored() -> None:
    machine = SessionStateMachine()
    machine.start(pomodoro(), now=0.0)
    machine.pause(now=0.0)

    results = run_ticks(machine, 5)

    assert results == [None] * 5
    assert machine.runtime.remaining_seconds == 1500


def test_countdown_completes_exactly_once() -> None:
    machine = SessionStateMachine()
    machine.start(pomodoro(focus_duration_seconds=3, break_duration_seconds=0), now=0.0)

    results = run_ticks(machine, 6)

    finished = [t for t in results if t is not None and t.event == TransitionEvent.FOCUS_FINISHED]
    assert len(finished) == 1
    assert results[2] is finished[0]
    assert results[3:] == [None, None, None]
    assert machine.runtime.remaining_seconds == 0
    assert machine.state == SessionState.COMPLETED
    assert machine.sessions_completed_this_run == 1


def test_adjust_time_round_trip_and_clamp() -> None:
    machine = SessionStateMachine()
    machine.start(pomodoro(), now=0.0)
    run_ticks(machine, 600)

    machine.adjust_time(300)
    assert machine.runtime.remaining_seconds == 1200
    machine.adjust_time(-300)
    assert machine.runtime.remaining_seconds == 900

    machine.adjust_time(5000)
    assert machine.runtime.remaining_seconds == 1500
    machine.adjust_time(-5000)
    assert machine.runtime.remaining_seconds == 0


def test_adjust_time_is_unclamped_in_flow_mode() -> None:
    machine = SessionStateMachine()
    machine.start(SessionConfig.for_mode(FocusMode.FLOW), now=0.0)
    run_ticks(machine, 10)

    machine.adjust_time(-30)

    assert machine.runtime.remaining_seconds == -20


def test_adjust_time_rejected_when_not_active() -> None:
    machine = SessionStateMachine()
    assert machine.adjust_time(30) is None

    machine.start(pomodoro(), now=0.0)
    machine.end(now=5.0)
    assert machine.adjust_time(30) is None
    assert machine.runtime.remaining_seconds == 1500


def test_flow_mode_never_auto_completes() -> None:
    machine = SessionStateMachine()
    machine.start(SessionConfig.for_mode(FocusMode.FLOW), now=0.0)

    run_ticks(machine, 90)

    assert machine.state == SessionState.RUNNING
    assert machine.runtime.remaining_seconds == 90


def test_end_cancels_and_second_end_is_noop() -> None:
    machine = SessionStateMachine()
    machine.start(pomodoro(), now=0.0)
    run_ticks(machine, 100)

    first = machine.end(completed=False, now=100.0)
    second = machine.end(completed=False, now=101.0)

    assert first is not None and first.is_terminal
    assert second is None
    assert machine.state == SessionState.CANCELED
    assert machine.runtime.elapsed_seconds(machine.runtime.ended_at) == 100


def test_elapsed_excludes_paused_interval() -> None:
    machine = SessionStateMachine()
    machine.start(pomodoro(), now=0.0)
    machine.pause(now=60.0)
    machine.resume(now=360.0)
    machine.end(now=400.0)

    assert machine.runtime.elapsed_seconds(400.0) == 100


def test_break_is_fresh_runtime_and_flows_into_focus() -> None:
    config = pomodoro(focus_duration_seconds=2, break_duration_seconds=2)
    machine = SessionStateMachine()
    machine.start(config, now=0.0)
    run_ticks(machine, 2)
    focus_runtime = machine.runtime

    assert machine.start_break(now=2.0) is None  # no decision accepted yet
    machine.accept_decision(CompletionPolicy().decide(config, machine.sessions_completed_this_run))
    transition = machine.start_break(now=2.0)

    assert transition is not None
    assert machine.runtime is not focus_runtime
    assert machine.phase == SessionPhase.BREAK
    assert focus_runtime.state == SessionState.COMPLETED

    results = run_ticks(machine, 2, start=2.0)

    assert results[-1].event == TransitionEvent.BREAK_FINISHED
    assert machine.state == SessionState.RUNNING
    assert machine.phase == SessionPhase.FOCUS
    assert machine.runtime.remaining_seconds == 2
    assert machine.sessions_completed_this_run == 1


def test_skip_break_from_running_break() -> None:
    config = pomodoro(focus_duration_seconds=1, break_duration_seconds=60)
    machine = SessionStateMachine()
    machine.start(config, now=0.0)
    machine.tick(now=1.0)
    machine.accept_decision(CompletionPolicy().decide(config, 1))
    machine.start_break(now=1.0)
    machine.tick(now=2.0)

    transition = machine.skip_break(now=2.0)

    assert transition.event == TransitionEvent.SKIP_BREAK
    assert transition.source_phase == SessionPhase.BREAK
    assert machine.phase == SessionPhase.FOCUS
    assert machine.runtime.remaining_seconds == 1


def test_terminal_decision_returns_to_idle() -> None:
    config = pomodoro(focus_duration_seconds=1, break_duration_seconds=0)
    machine = SessionStateMachine()
    machine.start(config, now=0.0)
    machine.tick(now=1.0)

    transition = machine.accept_decision(CompletionPolicy().decide(config, 1))

    assert transition.event == TransitionEvent.FINISH_RUN
    assert machine.state == SessionState.IDLE
    assert machine.runtime is None
    assert machine.start_next_session(now=2.0) is None
    assert machine.start(config, now=2.0) is not None


def test_reset_only_from_terminal_states() -> None:
    machine = SessionStateMachine()
    machine.start(pomodoro(), now=0.0)
    assert machine.reset() is None
    assert machine.state == SessionState.RUNNING

    machine.end(now=1.0)
    transition = machine.reset()

    assert transition.event == TransitionEvent.RESET
    assert machine.state == SessionState.IDLE


def test_snapshot_reports_progress() -> None:
    machine = SessionStateMachine()
    machine.start(pomodoro(focus_duration_seconds=100), now=0.0)
    run_ticks(machine, 25)

    snapshot = machine.snapshot(now=25.0)

    assert snapshot.remaining_seconds == 75
    assert snapshot.elapsed_seconds == 25
    assert snapshot.progress == 0.25
    assert snapshot.mode == FocusMode.POMODORO


def test_restore_subtracts_missed_time_and_completes_on_next_tick() -> None:
    machine = SessionStateMachine()
    machine.start(pomodoro(focus_duration_seconds=10), now=0.0)
    run_ticks(machine, 4)
    saved = machine.runtime.to_dict(4.0)

    restored = SessionStateMachine()
    transition = restored.restore(saved, now=100.0, missed_seconds=30.0)

    assert transition.event == TransitionEvent.RESTORE
    assert (transition.source, transition.target) == (SessionState.IDLE, SessionState.RUNNING)
    assert restored.runtime.remaining_seconds == 0
    assert restored.runtime.runtime_id != machine.runtime.runtime_id
    assert restored.tick(now=101.0).event == TransitionEvent.FOCUS_FINISHED
    assert restored.sessions_completed_this_run == 1


def test_restore_flow_adds_missed_time() -> None:
    machine = SessionStateMachine()
    machine.start(SessionConfig.for_mode(FocusMode.FLOW, title="Essay"), now=0.0)
    run_ticks(machine, 90)

    restored = SessionStateMachine()
    restored.restore(machine.runtime.to_dict(90.0), now=0.0, missed_seconds=10.5)

    assert restored.config.title == "Essay"
    assert restored.runtime.remaining_seconds == 100
    assert restored.runtime.total_seconds == 100
    assert restored.snapshot(now=0.0).elapsed_seconds == 100


def test_restore_only_from_idle_and_only_active_sessions() -> None:
    machine = SessionStateMachine()
    machine.start(pomodoro(), now=0.0)
    saved = machine.runtime.to_dict(0.0)

    assert machine.restore(saved, now=0.0) is None

    canceled = dict(saved, state="canceled")
    assert SessionStateMachine().restore(canceled, now=0.0) is None
    assert SessionStateMachine().restore({"config": {}}, now=0.0) is None
