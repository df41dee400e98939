from __future__ import annotations

import asyncio

import pytest
from fakes import BATCH, FakeTransport, logged_in_owner, ok

from pywebwx import MessageContext, MessageDispatcher
from pywebwx.exceptions import WebWxError
from pywebwx.message import Message
from pywebwx.user import make_contact


def _text(from_user: str = "@a", content: str = "hi", bot=None) -> Message:
    raw = {
        "MsgId": "1",
        "MsgType": 1,
        "FromUserName": from_user,
        "ToUserName": "@self",
        "Content": content,
    }
    return Message(raw, bot=bot)


@pytest.mark.asyncio
async def test_routes_build_one_chain_in_registration_order() -> None:
    calls: list[str] = []
    d = MessageDispatcher()
    d.on_text(lambda ctx: calls.append("text"))
    d.on_image(lambda ctx: calls.append("image"))
    d.on_friend(lambda ctx: calls.append("friend-1"), lambda ctx: calls.append("friend-2"))
    d.on_group(lambda ctx: calls.append("group"))

    await d.dispatch(_text())
    assert calls == ["text", "friend-1", "friend-2"]

    calls.clear()
    await d(_text(from_user="@@g"))
    assert calls == ["text", "group"]


@pytest.mark.asyncio
async def test_next_runs_the_rest_first() -> None:
    calls: list[str] = []
    d = MessageDispatcher()

    async def outer(ctx: MessageContext) -> None:
        calls.append("outer-before")
        await ctx.next()
        calls.append("outer-after")

    d.on_text(outer, lambda ctx: calls.append("inner"))
    d.on_text(lambda ctx: calls.append("last"))

    await d.dispatch(_text())
    assert calls == ["outer-before", "inner", "last", "outer-after"]


@pytest.mark.asyncio
async def test_abort_stops_the_chain() -> None:
    calls: list[str] = []
    d = MessageDispatcher()

    def guard(ctx: MessageContext) -> None:
        calls.append("guard")
        if ctx.content == "stop":
            ctx.abort()

    d.on_text(guard, lambda ctx: calls.append("after"))

    ctx = await d.dispatch(_text(content="stop"))
    assert ctx.aborted
    assert calls == ["guard"]

    calls.clear()
    ctx = await d.dispatch(_text(content="go"))
    assert not ctx.aborted
    assert calls == ["guard", "after"]


@pytest.mark.asyncio
async def test_context_delegates_to_message() -> None:
    d = MessageDispatcher()
    seen: list[object] = []
    d.on_text(lambda ctx: seen.append((ctx.content, ctx.is_text(), ctx.message.msg_id)))
    await d.dispatch(_text(content="yo"))
    assert seen == [("yo", True, "1")]


@pytest.mark.asyncio
async def test_async_matcher_and_concurrent_dispatch() -> None:
    done = asyncio.Event()
    d = MessageDispatcher(concurrent=True)

    async def matcher(msg: Message) -> bool:
        return msg.content.startswith("!")

    d.register(matcher, lambda ctx: done.set())
    await d.dispatch(_text(content="plain"))
    await asyncio.sleep(0)
    assert not done.is_set()

    await d.dispatch(_text(content="!cmd"))
    await asyncio.wait_for(done.wait(), 1)


def test_none_matcher_is_rejected() -> None:
    with pytest.raises(WebWxError):
        MessageDispatcher().register(None)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_sender_based_routes() -> None:
    fake = FakeTransport()
    fake.add(BATCH, ok(ContactList=[]))
    bot, owner = logged_in_owner(fake)
    owner.upsert(make_contact({"UserName": "@a", "NickName": "ann", "RemarkName": "annie"}, owner))
    owner.upsert(make_contact({"UserName": "@@g", "NickName": "team"}, owner))

    calls: list[str] = []
    d = MessageDispatcher()
    d.on_friend_by_nick_name("ann", lambda ctx: calls.append("nick"))
    d.on_friend_by_remark_name("annie", lambda ctx: calls.append("remark"))
    d.on_group_by_name("team", lambda ctx: calls.append("group"))

    await d.dispatch(_text("@a", bot=bot))
    assert calls == ["nick", "remark"]

    calls.clear()
    await d.dispatch(_text("@@g", bot=bot))
    assert calls == ["group"]

    calls.clear()
    await d.dispatch(_text("@unknown", bot=bot))
    assert calls == []
