from __future__ import annotations

"""Session configuration values and engine-wide settings."""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any


logger = logging.getLogger(__name__)


class FocusMode(str, Enum):
    POMODORO = "pomodoro"
    DEEP_WORK = "deepWork"
    FLOW = "flow"
    CUSTOM = "custom"

    @property
    def label(self) -> str:
        return MODE_LABELS[self]

    @property
    def is_open_ended(self) -> bool:
        return self is FocusMode.FLOW


MODE_LABELS = {
    FocusMode.DEEP_WORK: "Deep Work",
    FocusMode.POMODORO: "Pomodoro",
    FocusMode.FLOW: "Flow State",
    FocusMode.CUSTOM: "Custom",
}

# (focus minutes, break minutes)
MODE_PRESETS = {
    FocusMode.DEEP_WORK: (90, 20),
    FocusMode.POMODORO: (25, 5),
    FocusMode.FLOW: (0, 0),
    FocusMode.CUSTOM: (45, 10),
}


@dataclass(frozen=True)
class SessionConfig:
    mode: FocusMode
    focus_duration_seconds: int
    break_duration_seconds: int = 0
    is_deep_focus: bool = False
    linked_task_id: str | None = None
    app_blocking_enabled: bool = False
    title: str = "Focus"
    long_break_duration_seconds: int = 0
    sessions_before_long_break: int = 4

    def __post_init__(self) -> None:
        if not isinstance(self.mode, FocusMode):
            object.__setattr__(self, "mode", FocusMode(self.mode))
        if self.focus_duration_seconds < 0 or self.break_duration_seconds < 0:
            raise ValueError("Durations must not be negative")
        if self.long_break_duration_seconds < 0:
            raise ValueError("Long break duration must not be negative")
        if self.focus_duration_seconds == 0 and not self.mode.is_open_ended:
            raise ValueError(f"Focus duration of 0 is only valid for {FocusMode.FLOW.value} mode")
        if self.sessions_before_long_break < 1:
            raise ValueError("sessions_before_long_break must be at least 1")

    @classmethod
    def for_mode(cls, mode: FocusMode | str, **overrides: Any) -> SessionConfig:
        mode = FocusMode(mode)
        focus_minutes, break_minutes = MODE_PRESETS[mode]
        config = cls(
            mode=mode,
            focus_duration_seconds=focus_minutes * 60,
            break_duration_seconds=break_minutes * 60,
        )
        return replace(config, **overrides) if overrides else config

    @property
    def counts_up(self) -> bool:
        return self.mode.is_open_ended

    @property
    def blocking_title(self) -> str:
        return f"{self.mode.label}: {self.title}"


@dataclass(frozen=True)
class EngineSettings:
    default_mode: FocusMode = FocusMode.POMODORO

    @classmethod
    def from_mapping(cls, raw: Any) -> EngineSettings:
        defaults = cls()
        if not isinstance(raw, dict):
            return defaults

        mode_value = raw.get("default_mode", defaults.default_mode.value)
        try:
            mode = FocusMode(mode_value)
        except ValueError:
            logger.warning("Ignoring unknown default_mode setting: %r", mode_value)
            mode = defaults.default_mode

        return cls(default_mode=mode)

    def to_mapping(self) -> dict[str, Any]:
        return {"default_mode": self.default_mode.value}
