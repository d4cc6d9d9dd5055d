from __future__ import annotations

import asyncio
from typing import Any, Callable, Protocol


class PresentationContext(Protocol):
    """Where sink callbacks and UI-visible state changes are allowed to run."""

    def submit(self, fn: Callable[..., Any], *args: Any) -> None: ...


class InlineContext:
    """Runs callbacks immediately on the caller (tests, headless tools)."""

    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        fn(*args)


class LoopContext:
    """Hands callbacks to an asyncio loop without waiting for them."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop

    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        self.loop.call_soon_threadsafe(fn, *args)
