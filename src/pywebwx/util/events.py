from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger as log

Listener = Callable[..., Awaitable[None]] | Callable[..., None]


class AsyncEventEmitter:
    """
    Async-friendly event emitter behind the bot callbacks.

    - `on(event, fn)` registers a listener (sync or async); `off` removes it.
    - `emit_isolated(event, *args)` logs and drops listener errors, so user code
      cannot tear down the loop that emits.
    - `wait_for(event, predicate, timeout_s)` waits for the next matching emission.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._waiters: dict[str, list[tuple[Callable[..., bool] | None, asyncio.Future[Any]]]] = (
            defaultdict(list)
        )

    def on(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        with contextlib.suppress(ValueError):
            listeners.remove(listener)

    def _resolve_waiters(self, event: str, args: tuple[Any, ...]) -> bool:
        waiters = self._waiters.get(event)
        if not waiters:
            return False
        triggered = False
        remaining: list[tuple[Callable[..., bool] | None, asyncio.Future[Any]]] = []
        for predicate, fut in waiters:
            if fut.done():
                continue
            if predicate is None or predicate(*args):
                fut.set_result(args[0] if len(args) == 1 else args)
                triggered = True
            else:
                remaining.append((predicate, fut))
        if remaining:
            self._waiters[event] = remaining
        else:
            self._waiters.pop(event, None)
        return triggered

    async def emit_isolated(self, event: str, *args: Any) -> bool:
        any_triggered = self._resolve_waiters(event, args)
        for listener in list(self._listeners.get(event, [])):
            any_triggered = True
            try:
                res = listener(*args)
                if asyncio.iscoroutine(res):
                    await res
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("listener for {!r} raised", event)
        return any_triggered

    async def wait_for(
        self,
        event: str,
        *,
        predicate: Callable[..., bool] | None = None,
        timeout_s: float | None = None,
    ) -> Any:
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[Any] = loop.create_future()
        self._waiters[event].append((predicate, fut))
        try:
            if timeout_s is None:
                return await fut
            return await asyncio.wait_for(fut, timeout=timeout_s)
        finally:
            waiters = self._waiters.get(event)
            if waiters:
                self._waiters[event] = [(p, f) for (p, f) in waiters if f is not fut]
                if not self._waiters[event]:
                    self._waiters.pop(event, None)
