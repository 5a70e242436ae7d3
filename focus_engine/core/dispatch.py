from __future__ import annotations

"""Fire-and-forget dispatch of collaborator calls."""

from typing import Callable

from PyQt6.QtCore import QTimer


Job = Callable[[], None]
Dispatch = Callable[[Job], None]


def deferred(job: Job) -> None:
    """Runs `job` on the next pass of the Qt event loop."""
    QTimer.singleShot(0, job)


def immediate(job: Job) -> None:
    job()
