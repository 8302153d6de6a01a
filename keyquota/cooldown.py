"""Global cooldown between usage checks.

``Idle`` / ``Cooling`` are plain values with pure transitions; ``CooldownTimer``
drives them once per second through an injected scheduler. An asyncio event
loop is a valid scheduler (``loop.call_later`` returns a cancelable handle).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Union

logger = logging.getLogger(__name__)

TICK_SECONDS = 1.0


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Cooling:
    remaining: int
    deadline: float


CooldownState = Union[Idle, Cooling]

IDLE = Idle()


def start(seconds: int, now: float) -> Cooling:
    return Cooling(remaining=seconds, deadline=now + seconds)


def tick(state: CooldownState) -> CooldownState:
    if not isinstance(state, Cooling):
        return state
    remaining = state.remaining - 1
    if remaining <= 0:
        return IDLE
    return Cooling(remaining=remaining, deadline=state.deadline)


def is_cooling(state: CooldownState) -> bool:
    return isinstance(state, Cooling)


class Handle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], object]) -> Handle: ...


class CooldownTimer:
    """Runs one countdown at a time. ``trigger`` always cancels the previous one."""

    def __init__(
        self,
        scheduler: Scheduler,
        seconds: int = 10,
        clock: Callable[[], float] = time.monotonic,
        on_change: Optional[Callable[[CooldownState], None]] = None,
    ):
        self.scheduler = scheduler
        self.seconds = seconds
        self.clock = clock
        self.on_change = on_change
        self.state: CooldownState = IDLE
        self._handle: Optional[Handle] = None

    def trigger(self) -> Cooling:
        return self.resume(self.seconds)

    def resume(self, remaining: int) -> Cooling:
        """Count down from ``remaining``, e.g. a cooldown another process started."""
        self._cancel_pending()
        self.state = start(remaining, self.clock())
        self._schedule()
        return self.state

    def cancel(self) -> None:
        self._cancel_pending()
        self.state = IDLE

    def _cancel_pending(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _schedule(self) -> None:
        self._handle = self.scheduler.call_later(TICK_SECONDS, self._on_tick)

    def _on_tick(self) -> None:
        self._handle = None
        self.state = tick(self.state)
        if is_cooling(self.state):
            self._schedule()
        else:
            logger.debug("Cooldown finished")
        if self.on_change is not None:
            self.on_change(self.state)
