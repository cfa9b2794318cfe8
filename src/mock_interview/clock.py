"""Time source and timer scheduling.

Every timeout in a session (silence window, cooldowns, mic re-arm grace,
elapsed-time ticks, persistence flushes) goes through a `Clock` so the whole
session can be driven deterministically.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(ABC):
    """Wall-clock milliseconds plus one-shot timers."""

    @abstractmethod
    def now_ms(self) -> float:
        """Current time in milliseconds."""
        ...

    @abstractmethod
    def call_later(self, delay_s: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """Schedule `callback(*args)` after `delay_s` seconds."""
        ...


class LoopClock(Clock):
    """Clock backed by the running asyncio loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now_ms(self) -> float:
        return time.time() * 1000.0

    def call_later(self, delay_s: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return self._get_loop().call_later(max(0.0, delay_s), callback, *args)
