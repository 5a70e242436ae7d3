from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from focus_engine.core.config import SessionConfig


logger = logging.getLogger(__name__)


class NextCommand(str, Enum):
    START_BREAK = "start_break"
    START_NEXT_SESSION = "start_next_session"


@dataclass(frozen=True)
class CompletionDecision:
    next_commands: tuple[NextCommand, ...]
    break_seconds: int = 0
    is_long_break: bool = False
    prompt_task_completion: bool = False
    linked_task_id: str | None = None

    @property
    def offers_break(self) -> bool:
        return NextCommand.START_BREAK in self.next_commands

    @property
    def offers_next_session(self) -> bool:
        return NextCommand.START_NEXT_SESSION in self.next_commands

    @property
    def is_terminal(self) -> bool:
        return not self.next_commands


class CompletionPolicy:
    """Decides what follows a naturally completed focus phase.

    The policy never picks between break and next session; it only lists the
    commands the UI may offer. A linked task asks for one completion prompt.
    """

    def decide(self, config: SessionConfig, sessions_completed: int) -> CompletionDecision:
        break_seconds, is_long = self.break_for(config, sessions_completed)
        prompt = config.linked_task_id is not None

        if break_seconds > 0:
            commands: tuple[NextCommand, ...] = (NextCommand.START_BREAK, NextCommand.START_NEXT_SESSION)
        elif prompt:
            commands = (NextCommand.START_NEXT_SESSION,)
        else:
            commands = ()

        decision = CompletionDecision(
            next_commands=commands,
            break_seconds=break_seconds,
            is_long_break=is_long,
            prompt_task_completion=prompt,
            linked_task_id=config.linked_task_id,
        )
        logger.debug("Completion decision after %d sessions: %s", sessions_completed, decision)
        return decision

    @staticmethod
    def break_for(config: SessionConfig, sessions_completed: int) -> tuple[int, bool]:
        if config.break_duration_seconds <= 0:
            return 0, False
        if (
            config.long_break_duration_seconds > 0
            and sessions_completed > 0
            and sessions_completed % config.sessions_before_long_break == 0
        ):
            return config.long_break_duration_seconds, True
        return config.break_duration_seconds, False
