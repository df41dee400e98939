from __future__ import annotations

import pytest
from fakes import FakeTransport, logged_in_owner

from pywebwx.intake import (
    AT_SEPARATOR,
    IntakePipeline,
    detect_at,
    normalize_text,
    split_group_sender,
)
from pywebwx.message import Message
from pywebwx.user import make_contact


def _msg(bot=None, **raw) -> Message:
    raw.setdefault("MsgId", "1")
    raw.setdefault("MsgType", 1)
    return Message(raw, bot=bot)


def test_split_group_sender() -> None:
    msg = _msg(FromUserName="@@g", ToUserName="@self", Content="@sender:<br/>hi")
    split_group_sender(msg)
    assert msg.sender_user_name_in_group == "@sender"
    assert msg.content == "hi"


def test_split_skips_non_group_and_system_messages() -> None:
    one_to_one = _msg(FromUserName="@a", Content="@x:<br/>hi")
    split_group_sender(one_to_one)
    assert one_to_one.sender_user_name_in_group == ""
    assert one_to_one.content == "@x:<br/>hi"

    system = _msg(MsgType=10000, FromUserName="@@g", Content="x:<br/>joined")
    split_group_sender(system)
    assert system.sender_user_name_in_group == ""


def test_self_sent_group_message_is_not_split() -> None:
    bot, owner = logged_in_owner(FakeTransport())
    msg = _msg(bot, FromUserName="@self", ToUserName="@@g", Content="a:<br/>b")
    split_group_sender(msg, owner)
    assert msg.content == "a:<br/>b"
    assert msg.is_send_by_group
    assert msg.is_send_by_self


def test_detect_at_uses_group_display_name() -> None:
    _, owner = logged_in_owner(FakeTransport())
    owner.upsert(
        make_contact(
            {"UserName": "@@g", "MemberList": [{"UserName": "@self", "DisplayName": "boss"}]},
            owner,
        )
    )
    msg = _msg(FromUserName="@@g", ToUserName="@self", Content=f"@boss{AT_SEPARATOR}ping")
    detect_at(msg, owner)
    assert msg.is_at
    assert msg.content == "ping"

    other = _msg(FromUserName="@@g", ToUserName="@self", Content=f"@Me{AT_SEPARATOR}ping")
    detect_at(other, owner)
    assert not other.is_at


def test_detect_at_falls_back_to_own_nick_name() -> None:
    _, owner = logged_in_owner(FakeTransport())
    msg = _msg(FromUserName="@@g", ToUserName="@self", Content="@Me hello")
    detect_at(msg, owner)
    assert msg.is_at
    assert msg.content == "hello"

    elsewhere = _msg(FromUserName="@@g", ToUserName="@self", Content="hi @Me")
    detect_at(elsewhere, owner)
    assert elsewhere.is_at
    assert elsewhere.content == "hi @Me"

    longer = _msg(FromUserName="@@g", ToUserName="@self", Content="hi @Meow")
    detect_at(longer, owner)
    assert not longer.is_at


def test_detect_at_after_another_mention() -> None:
    _, owner = logged_in_owner(FakeTransport())
    msg = _msg(FromUserName="@@g", ToUserName="@self", Content=f"@Other{AT_SEPARATOR}@Me hi")
    detect_at(msg, owner)
    assert msg.is_at
    assert msg.content == f"@Other{AT_SEPARATOR}@Me hi"


def test_detect_at_ignores_one_to_one() -> None:
    _, owner = logged_in_owner(FakeTransport())
    msg = _msg(FromUserName="@a", ToUserName="@self", Content="@Me hi")
    detect_at(msg, owner)
    assert not msg.is_at


def test_normalize_text() -> None:
    msg = _msg(Content='a &amp; b<br/>c <span class="emoji emoji1f604"></span>')
    normalize_text(msg)
    assert msg.content == "a & b\nc \U0001f604"


@pytest.mark.asyncio
async def test_pipeline_keeps_raw_content_and_runs_extra_steps() -> None:
    seen: list[str] = []

    async def upper(msg: Message, owner) -> None:
        seen.append(msg.content)
        msg.content = msg.content.upper()

    pipeline = IntakePipeline([*IntakePipeline.DEFAULT_STEPS, upper], hydrate=False)
    msg = _msg(FromUserName="@a", Content="x<br/>y")
    await pipeline.process(msg, None)

    assert seen == ["x\ny"]
    assert msg.content == "X\nY"
    assert msg.raw_content == "x<br/>y"


@pytest.mark.asyncio
async def test_hydration_failure_does_not_block_delivery() -> None:
    fake = FakeTransport()
    bot, owner = logged_in_owner(fake)
    await bot.exit()

    msg = _msg(bot, FromUserName="@@g", ToUserName="@self", Content="@s:<br/>hey")
    await IntakePipeline().process(msg, owner)
    assert msg.content == "hey"
    assert msg.sender_user_name_in_group == "@s"
