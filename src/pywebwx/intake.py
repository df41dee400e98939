from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING

from loguru import logger as log

from .codec import format_emoji, replace_br, unescape_html
from .constants import MsgType
from .exceptions import WebWxError
from .message import Message
from .user import Group, User

if TYPE_CHECKING:
    from .user import Self

GROUP_SENDER_SEPARATOR = ":<br/>"
AT_SEPARATOR = "\u2005"

Step = Callable[[Message, "Self | None"], Awaitable[None] | None]


def split_group_sender(msg: Message, owner: Self | None = None) -> None:
    """`@member:<br/>text` from a group becomes sender `@member` and content `text`."""

    if not msg.from_user_name.startswith("@@"):
        return
    if msg.msg_type == MsgType.SYS or msg.is_send_by_self:
        return
    sender, sep, rest = msg.content.partition(GROUP_SENDER_SEPARATOR)
    if not sep:
        return
    msg.sender_user_name_in_group = sender
    msg.content = rest


def _addressee_name(msg: Message, owner: Self | None) -> str:
    if owner is None:
        return ""
    group = owner.find_cached(msg.from_user_name)
    if isinstance(group, Group):
        member = group.member_by_user_name(msg.to_user_name)
        if member is not None:
            return member.display_name or member.nick_name
    if msg.to_user_name == owner.user_name:
        return owner.display_name or owner.nick_name
    return ""


def detect_at(msg: Message, owner: Self | None = None) -> None:
    if not msg.is_send_by_group:
        return
    if msg.is_send_by_self:
        msg.is_at = "@" in msg.content or AT_SEPARATOR in msg.content
        return
    name = _addressee_name(msg, owner)
    if not name:
        return
    mention = f"@{name}"
    # "@Me" must not match "@Meg".
    bounded = rf"{re.escape(mention)}(?:{AT_SEPARATOR}|\s|<br/>|$)"
    msg.is_at = re.search(bounded, msg.content) is not None
    if msg.is_at:
        # Drop the leading mention so handlers see just the text addressed to us.
        msg.content = re.sub(
            rf"^{re.escape(mention)}(?:{AT_SEPARATOR}|\s)\s*", "", msg.content, count=1
        )


def normalize_text(msg: Message, owner: Self | None = None) -> None:
    msg.content = format_emoji(unescape_html(replace_br(msg.content)))


async def hydrate_group_sender(msg: Message, owner: Self | None = None) -> None:
    """Make sure the group and the in-group sender are both in the contact cache."""

    if owner is None or not msg.from_user_name.startswith("@@"):
        return
    group = owner.find_cached(msg.from_user_name)
    if not isinstance(group, Group):
        fetched = await owner.batch_detail([User(user_name=msg.from_user_name)])
        if not fetched:
            return
        owner.upsert(fetched[0])
        group = fetched[0]
        if not isinstance(group, Group):
            return
    sender = msg.sender_user_name_in_group
    if sender and group.member_by_user_name(sender) is None:
        await group.refresh()


class IntakePipeline:
    """
    Ordered transforms applied to every inbound message before delivery.

    Steps run in sequence; a failing hydration step is logged and does not
    stop delivery, since the message text is already normalized by then.
    """

    DEFAULT_STEPS: Sequence[Step] = (
        split_group_sender,
        detect_at,
        normalize_text,
    )

    def __init__(self, steps: Sequence[Step] | None = None, *, hydrate: bool = True) -> None:
        self.steps: list[Step] = list(self.DEFAULT_STEPS if steps is None else steps)
        self.hydrate = hydrate

    async def process(self, msg: Message, owner: Self | None) -> Message:
        msg.raw_content = msg.content
        for step in self.steps:
            res = step(msg, owner)
            if res is not None:
                await res
        if self.hydrate:
            try:
                await hydrate_group_sender(msg, owner)
            except WebWxError as e:
                log.warning("could not hydrate sender of {}: {}", msg.msg_id, e)
        return msg
