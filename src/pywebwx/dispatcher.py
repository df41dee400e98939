from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .exceptions import WebWxError
from .message import Message
from .user import User
from .util.asyncio import ensure_task, maybe_await

Matcher = Callable[[Message], bool] | Callable[[Message], Awaitable[bool]]
ContextHandler = Callable[["MessageContext"], Any]

_ABORTED = 1 << 30


@dataclass(slots=True)
class MessageContext:
    """
    A message travelling down a handler chain.

    Handlers run in registration order. A handler may call `await ctx.next()`
    to run the rest of the chain before finishing its own work, or
    `ctx.abort()` to stop the chain after it returns.
    """

    message: Message
    handlers: list[ContextHandler] = field(default_factory=list)
    index: int = 0

    async def next(self) -> None:
        self.index += 1
        while self.index <= len(self.handlers):
            handler = self.handlers[self.index - 1]
            await maybe_await(handler(self))
            self.index += 1

    def abort(self) -> None:
        self.index = _ABORTED

    @property
    def aborted(self) -> bool:
        return self.index >= _ABORTED

    def __getattr__(self, name: str) -> Any:
        if name == "message":
            raise AttributeError(name)
        return getattr(self.message, name)


@dataclass(slots=True)
class _Route:
    matcher: Matcher
    handlers: tuple[ContextHandler, ...]


class MessageDispatcher:
    """
    Route messages to handlers by predicate.

    Every route whose matcher accepts a message contributes its handlers to a
    single chain for that message. Hook it up with `bot.on("message", dispatcher)`.
    """

    def __init__(self, *, concurrent: bool = False) -> None:
        self.concurrent = concurrent
        self._routes: list[_Route] = []
        self._tasks: set[asyncio.Task[None]] = set()

    def register(self, matcher: Matcher, *handlers: ContextHandler) -> None:
        if matcher is None:
            raise WebWxError("matcher can not be None")
        self._routes.append(_Route(matcher, handlers))

    async def dispatch(self, msg: Message) -> MessageContext:
        chain: list[ContextHandler] = []
        for route in self._routes:
            matched = route.matcher(msg)
            if inspect.isawaitable(matched):
                matched = await matched
            if matched:
                chain.extend(route.handlers)
        ctx = MessageContext(message=msg, handlers=chain)
        if self.concurrent:
            task = ensure_task(ctx.next(), name=f"pywebwx.dispatch.{msg.msg_id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            await ctx.next()
        return ctx

    async def __call__(self, msg: Message) -> None:
        await self.dispatch(msg)

    def on_text(self, *handlers: ContextHandler) -> None:
        self.register(lambda m: m.is_text(), *handlers)

    def on_image(self, *handlers: ContextHandler) -> None:
        self.register(lambda m: m.is_picture(), *handlers)

    def on_emoticon(self, *handlers: ContextHandler) -> None:
        self.register(lambda m: m.is_emoticon(), *handlers)

    def on_voice(self, *handlers: ContextHandler) -> None:
        self.register(lambda m: m.is_voice(), *handlers)

    def on_video(self, *handlers: ContextHandler) -> None:
        self.register(lambda m: m.is_video(), *handlers)

    def on_card(self, *handlers: ContextHandler) -> None:
        self.register(lambda m: m.is_card(), *handlers)

    def on_media(self, *handlers: ContextHandler) -> None:
        self.register(lambda m: m.is_media(), *handlers)

    def on_friend_add(self, *handlers: ContextHandler) -> None:
        self.register(lambda m: m.is_friend_add(), *handlers)

    def on_recalled(self, *handlers: ContextHandler) -> None:
        self.register(lambda m: m.is_recalled(), *handlers)

    def on_friend(self, *handlers: ContextHandler) -> None:
        self.register(lambda m: m.is_send_by_friend, *handlers)

    def on_group(self, *handlers: ContextHandler) -> None:
        self.register(lambda m: m.is_send_by_group, *handlers)

    def on_user(self, predicate: Callable[[User], bool], *handlers: ContextHandler) -> None:
        """Match on the resolved sender; messages whose sender cannot be resolved are skipped."""

        async def _match(msg: Message) -> bool:
            try:
                sender = await msg.sender()
            except WebWxError:
                return False
            return predicate(sender)

        self.register(_match, *handlers)

    def on_friend_by_nick_name(self, nick_name: str, *handlers: ContextHandler) -> None:
        self.on_user(lambda u: u.is_friend and u.nick_name == nick_name, *handlers)

    def on_friend_by_remark_name(self, remark_name: str, *handlers: ContextHandler) -> None:
        self.on_user(lambda u: u.is_friend and u.remark_name == remark_name, *handlers)

    def on_group_by_name(self, name: str, *handlers: ContextHandler) -> None:
        self.on_user(lambda u: u.is_group and u.nick_name == name, *handlers)
