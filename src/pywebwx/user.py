from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loguru import logger as log

from .codec import format_emoji
from .constants import (
    CONTACT_FLAG_PINNED,
    FILE_HELPER,
    INVITE_MEMBER_THRESHOLD,
    MAX_BATCH_CONTACT,
    MP_VERIFY_FLAGS,
    AppMsgType,
    MsgType,
)
from .exceptions import NoSuchUserError, SessionClosedError, WebWxError
from .message import SendMessage, SentMessage, build_file_app_message

if TYPE_CHECKING:
    from .bot import Bot
    from .caller import Caller
    from .session import WebWxSyncResponse

_WIRE_FIELDS: tuple[tuple[str, str, type], ...] = (
    ("user_name", "UserName", str),
    ("nick_name", "NickName", str),
    ("remark_name", "RemarkName", str),
    ("display_name", "DisplayName", str),
    ("verify_flag", "VerifyFlag", int),
    ("head_img_url", "HeadImgUrl", str),
    ("sex", "Sex", int),
    ("signature", "Signature", str),
    ("province", "Province", str),
    ("city", "City", str),
    ("alias", "Alias", str),
    ("contact_flag", "ContactFlag", int),
    ("member_count", "MemberCount", int),
    ("encry_chat_room_id", "EncryChatRoomId", str),
    ("uin", "Uin", int),
    ("star_friend", "StarFriend", int),
    ("attr_status", "AttrStatus", int),
    ("is_owner", "IsOwner", int),
    ("owner_uin", "OwnerUin", int),
    ("key_word", "KeyWord", str),
)


def _coerce(value: Any, kind: type) -> Any:
    if kind is int:
        try:
            return int(value or 0)
        except (TypeError, ValueError):
            return 0
    return str(value or "")


@dataclass(eq=False)
class User:
    """A contact as the gateway describes it: friend, group, subscription account or group member."""

    user_name: str
    nick_name: str = ""
    remark_name: str = ""
    display_name: str = ""
    verify_flag: int = 0
    head_img_url: str = ""
    sex: int = 0
    signature: str = ""
    province: str = ""
    city: str = ""
    alias: str = ""
    contact_flag: int = 0
    member_count: int = 0
    encry_chat_room_id: str = ""
    uin: int = 0
    star_friend: int = 0
    attr_status: int = 0
    is_owner: int = 0
    owner_uin: int = 0
    key_word: str = ""
    member_list: list[User] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)
    owner: Self | None = field(default=None, repr=False)

    @classmethod
    def from_wire(cls, d: dict[str, Any], owner: Self | None = None) -> User:
        kwargs = {name: _coerce(d.get(key), kind) for name, key, kind in _WIRE_FIELDS}
        for name in ("nick_name", "remark_name", "display_name"):
            kwargs[name] = format_emoji(kwargs[name])
        user = cls(**kwargs, raw=dict(d), owner=owner)
        user.member_list = [User.from_wire(m, owner) for m in d.get("MemberList") or []]
        return user

    def __str__(self) -> str:
        return f"<{type(self).__name__}:{self.nick_name or self.user_name}>"

    # Classification. A user satisfies at most one of these.

    @property
    def is_friend(self) -> bool:
        return (
            self.user_name.startswith("@")
            and not self.user_name.startswith("@@")
            and self.verify_flag == 0
        )

    @property
    def is_group(self) -> bool:
        return self.user_name.startswith("@@") and self.verify_flag == 0

    @property
    def is_mp(self) -> bool:
        return self.verify_flag in MP_VERIFY_FLAGS

    @property
    def is_pinned(self) -> bool:
        return self.contact_flag == CONTACT_FLAG_PINNED

    # Capabilities shared by every contact kind.

    def _owner(self) -> Self:
        if self.owner is None:
            raise WebWxError(f"{self} is not bound to a logged-in user")
        return self.owner

    async def send_text(self, content: str) -> SentMessage:
        return await self._owner().send_text_to(self.user_name, content)

    async def send_image(self, data: bytes, filename: str = "image.png") -> SentMessage:
        return await self._owner().send_image_to(self.user_name, data, filename)

    async def send_file(self, data: bytes, filename: str) -> SentMessage:
        return await self._owner().send_file_to(self.user_name, data, filename)

    async def send_video(self, data: bytes, filename: str = "video.mp4") -> SentMessage:
        return await self._owner().send_video_to(self.user_name, data, filename)

    async def send_emoticon(self, media_id: str) -> SentMessage:
        return await self._owner().send_emoticon_to(self.user_name, media_id)

    async def send_message(self, msg: SendMessage) -> SentMessage:
        return await self._owner().send_message_to(self.user_name, msg)

    async def pin(self) -> None:
        await self._owner().caller().relation_pin(self.user_name, self.remark_name, True)
        self.contact_flag = CONTACT_FLAG_PINNED

    async def unpin(self) -> None:
        await self._owner().caller().relation_pin(self.user_name, self.remark_name, False)
        if self.contact_flag == CONTACT_FLAG_PINNED:
            self.contact_flag = 0

    async def detail(self) -> User:
        """Re-fetch this user through the batch-detail call."""

        owner = self._owner()
        if self.user_name == owner.user_name:
            return owner
        users = await owner.batch_detail([self])
        if not users:
            raise NoSuchUserError(self.user_name)
        return users[0]

    async def avatar(self) -> bytes:
        return await self._owner().caller().get_head_img(
            self.user_name, self.head_img_url, self.encry_chat_room_id
        )


class Friend(User):
    async def set_remark_name(self, name: str) -> None:
        await self._owner().caller().remark(self.user_name, name)
        self.remark_name = name

    async def add_into_groups(self, *groups: Group) -> None:
        for group in groups:
            await group.add_friends(self)


class Group(User):
    def member_by_user_name(self, user_name: str) -> User | None:
        for member in self.member_list:
            if member.user_name == user_name:
                return member
        return None

    async def refresh(self) -> Group:
        """Reload details, member list included, from the gateway."""

        fresh = await self.detail()
        self.member_list = fresh.member_list
        self.member_count = fresh.member_count or len(fresh.member_list)
        self.nick_name = fresh.nick_name or self.nick_name
        self.encry_chat_room_id = fresh.encry_chat_room_id or self.encry_chat_room_id
        self.is_owner = fresh.is_owner
        return self

    async def members(self, force_refresh: bool = False) -> Members:
        if force_refresh or not self.member_list:
            await self.refresh()
        return Members(self.member_list)

    async def rename(self, topic: str) -> None:
        await self._owner().caller().rename_chat_room(self.user_name, topic)
        self.nick_name = topic

    async def add_friends(self, *friends: Friend) -> None:
        if not friends:
            return
        members = await self.members()
        present = {m.user_name for m in members}
        for friend in friends:
            if friend.user_name in present:
                raise WebWxError(f"{friend} is already in {self}")
        await self._owner().caller().add_chat_room_members(
            self.user_name,
            [f.user_name for f in friends],
            invite=len(members) >= INVITE_MEMBER_THRESHOLD,
        )

    async def remove_members(self, *users: User) -> None:
        """Ask the gateway to remove members. The gateway may accept this without effect."""

        if not users:
            return
        if not self.is_owner:
            raise WebWxError("group owner required")
        members = await self.members()
        present = {m.user_name for m in members}
        if any(u.user_name not in present for u in users):
            raise WebWxError("invalid members")
        await self._owner().caller().remove_chat_room_members(
            self.user_name, [u.user_name for u in users]
        )


class Mp(User):
    """Subscription account."""


def make_contact(d: dict[str, Any], owner: Self | None) -> User:
    """Build a cache entry typed by classification."""

    probe = User.from_wire(d, owner)
    if probe.is_group:
        cls: type[User] = Group
    elif probe.is_mp:
        cls = Mp
    elif probe.is_friend or probe.user_name == FILE_HELPER:
        cls = Friend
    else:
        return probe
    user = cls.from_wire(d, owner)
    return user


class Members(list[User]):
    @property
    def count(self) -> int:
        return len(self)

    def first(self) -> User | None:
        return self[0] if self else None

    def last(self) -> User | None:
        return self[-1] if self else None

    def search(self, limit: int = 0, *conds: Callable[[User], bool]) -> Members:
        """Users passing every condition, at most `limit` of them (0 for no limit)."""

        if not conds:
            return Members(self)
        if limit <= 0:
            limit = len(self)
        out = Members()
        for user in self:
            if len(out) >= limit:
                break
            if all(cond(user) for cond in conds):
                out.append(user)
        return out

    def search_by_user_name(self, user_name: str, limit: int = 0) -> Members:
        return self.search(limit, lambda u: u.user_name == user_name)

    def search_by_nick_name(self, nick_name: str, limit: int = 0) -> Members:
        return self.search(limit, lambda u: u.nick_name == nick_name)

    def search_by_remark_name(self, remark_name: str, limit: int = 0) -> Members:
        return self.search(limit, lambda u: u.remark_name == remark_name)

    def friends(self) -> Members:
        return Members(u for u in self if u.is_friend)

    def groups(self) -> Members:
        return Members(u for u in self if u.is_group)

    def mps(self) -> Members:
        return Members(u for u in self if u.is_mp)


def _chunks(items: Sequence[User], size: int) -> Iterable[Sequence[User]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class Self(User):
    """
    The logged-in user.

    Owns the contact cache. Friends, groups and subscription accounts are
    views over one backing `Members` list, recomputed after each mutation.
    """

    bot: Bot | None = None

    def __init__(self, *args: Any, bot: Bot | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.bot = bot
        self.owner = self
        self._members: Members | None = None
        self._loaded = False
        self._views: dict[str, Members] = {}
        self._file_helper: Friend | None = None

    @classmethod
    def from_init(cls, d: dict[str, Any], bot: Bot) -> Self:
        kwargs = {name: _coerce(d.get(key), kind) for name, key, kind in _WIRE_FIELDS}
        for name in ("nick_name", "remark_name", "display_name"):
            kwargs[name] = format_emoji(kwargs[name])
        return cls(**kwargs, raw=dict(d), bot=bot)

    def caller(self) -> Caller:
        if self.bot is None or not self.bot.alive:
            raise SessionClosedError("session closed")
        return self.bot.caller

    # Cache.

    def _invalidate(self) -> None:
        self._views.clear()

    def _set_members(self, members: Iterable[User]) -> None:
        self._members = Members(members)
        self._invalidate()

    def cached_members(self) -> Members:
        return self._members if self._members is not None else Members()

    async def members(self, force_refresh: bool = False) -> Members:
        if not self._loaded or force_refresh:
            raw = await self.caller().get_contact()
            fetched = Members(make_contact(d, self) for d in raw)
            # Groups and hydrated senders are not part of the contact list.
            known = {u.user_name for u in fetched}
            fetched.extend(u for u in self.cached_members() if u.user_name not in known)
            self._set_members(fetched)
            self._loaded = True
            log.info("loaded {} contacts", len(raw))
        return self._members if self._members is not None else Members()

    async def _view(self, name: str, force_refresh: bool) -> Members:
        members = await self.members(force_refresh)
        view = self._views.get(name)
        if view is None:
            view = getattr(members, name)()
            self._views[name] = view
        return view

    async def friends(self, force_refresh: bool = False) -> Members:
        return await self._view("friends", force_refresh)

    async def groups(self, force_refresh: bool = False) -> Members:
        return await self._view("groups", force_refresh)

    async def mps(self, force_refresh: bool = False) -> Members:
        return await self._view("mps", force_refresh)

    async def file_helper(self) -> Friend:
        if self._file_helper is None:
            found = (await self.members()).search_by_user_name(FILE_HELPER, 1).first()
            if isinstance(found, Friend):
                self._file_helper = found
            else:
                # Desktop mode does not list the file helper; its handle is fixed.
                self._file_helper = Friend(user_name=FILE_HELPER, owner=self)
        return self._file_helper

    def find_cached(self, user_name: str) -> User | None:
        if user_name == self.user_name:
            return self
        for user in self.cached_members():
            if user.user_name == user_name:
                return user
        return None

    def upsert(self, user: User) -> None:
        members = self.cached_members()
        for i, existing in enumerate(members):
            if existing.user_name == user.user_name:
                members[i] = user
                break
        else:
            members.append(user)
        self._members = members
        self._invalidate()

    def remove(self, user_name: str) -> None:
        members = self.cached_members()
        self._members = Members(u for u in members if u.user_name != user_name)
        self._invalidate()

    async def batch_detail(self, users: Sequence[User]) -> list[User]:
        """Batch-detail `users` in slices of `MAX_BATCH_CONTACT`; no call for an empty input."""

        out: list[User] = []
        for chunk in _chunks(users, MAX_BATCH_CONTACT):
            raw = await self.caller().batch_get_contact(
                [(u.user_name, u.encry_chat_room_id) for u in chunk]
            )
            out.extend(make_contact(d, self) for d in raw)
        return out

    async def update_members_detail(self) -> Members:
        members = await self.members()
        detailed = await self.batch_detail(members)
        if detailed:
            self._set_members(detailed)
        return self.cached_members()

    async def member_by_user_name(self, user_name: str, *, fetch: bool = False) -> User:
        user = self.find_cached(user_name)
        if user is not None:
            return user
        if fetch:
            fetched = await self.batch_detail([User(user_name=user_name)])
            if fetched:
                self.upsert(fetched[0])
                return fetched[0]
        raise NoSuchUserError(user_name)

    async def group_by_user_name(self, user_name: str, *, fetch: bool = True) -> Group:
        user = await self.member_by_user_name(user_name, fetch=fetch)
        if not isinstance(user, Group):
            raise NoSuchUserError(f"{user_name} is not a group")
        return user

    def apply_sync(self, resp: WebWxSyncResponse) -> None:
        """Fold contact deltas from a sync pull into the cache."""

        for d in resp.mod_contact_list:
            self.upsert(make_contact(d, self))
        for d in resp.del_contact_list:
            name = str(d.get("UserName") or "")
            if name:
                self.remove(name)
        for d in resp.mod_chat_room_member_list:
            self._apply_member_delta(d)

    def _apply_member_delta(self, d: dict[str, Any]) -> None:
        name = str(d.get("UserName") or "")
        group = self.find_cached(name)
        if not isinstance(group, Group):
            if name.startswith("@@"):
                self.upsert(make_contact(d, self))
            return
        for md in d.get("MemberList") or []:
            member = User.from_wire(md, self)
            for i, existing in enumerate(group.member_list):
                if existing.user_name == member.user_name:
                    group.member_list[i] = member
                    break
            else:
                group.member_list.append(member)
        group.member_count = len(group.member_list)

    # Sending.

    async def send_message_to(self, user_name: str, msg: SendMessage) -> SentMessage:
        caller = self.caller()
        msg.from_user_name = self.user_name
        msg.to_user_name = user_name
        if msg.type == MsgType.TEXT:
            msg_id = await caller.send_text(msg)
        elif msg.type == MsgType.IMAGE:
            msg_id = await caller.send_image(msg)
        elif msg.type == MsgType.VIDEO:
            msg_id = await caller.send_video(msg)
        elif msg.type == MsgType.EMOTICON:
            msg_id = await caller.send_emoticon(msg)
        elif msg.type in (AppMsgType.ATTACH, MsgType.APP):
            msg_id = await caller.send_app(msg)
        else:
            raise WebWxError(f"unsupported message type {msg.type}")
        return SentMessage(message=msg, msg_id=msg_id, local_id=msg.local_id, owner=self)

    async def send_text_to(self, user_name: str, content: str) -> SentMessage:
        return await self.send_message_to(
            user_name, SendMessage.text(content, self.user_name, user_name)
        )

    async def _upload(self, user_name: str, data: bytes, filename: str) -> str:
        return await self.caller().upload_media(data, filename, self.user_name, user_name)

    async def send_image_to(self, user_name: str, data: bytes, filename: str = "image.png") -> SentMessage:
        media_id = await self._upload(user_name, data, filename)
        msg = SendMessage.media(MsgType.IMAGE, self.user_name, user_name, media_id)
        return await self.send_message_to(user_name, msg)

    async def send_video_to(self, user_name: str, data: bytes, filename: str = "video.mp4") -> SentMessage:
        media_id = await self._upload(user_name, data, filename)
        msg = SendMessage.media(MsgType.VIDEO, self.user_name, user_name, media_id)
        return await self.send_message_to(user_name, msg)

    async def send_file_to(self, user_name: str, data: bytes, filename: str) -> SentMessage:
        media_id = await self._upload(user_name, data, filename)
        msg = SendMessage(
            type=AppMsgType.ATTACH,
            content=build_file_app_message(filename, media_id, len(data)),
            from_user_name=self.user_name,
            to_user_name=user_name,
        )
        return await self.send_message_to(user_name, msg)

    async def send_emoticon_to(self, user_name: str, media_id: str) -> SentMessage:
        msg = SendMessage.media(MsgType.EMOTICON, self.user_name, user_name, media_id)
        return await self.send_message_to(user_name, msg)

    async def revoke_message(self, sent: SentMessage) -> None:
        await self.caller().revoke(sent.message.client_msg_id, sent.msg_id, sent.message.to_user_name)

    async def forward_message(self, sent: SentMessage, *users: User, delay_s: float = 0.5) -> None:
        """Re-send a sent message to other users, pausing `delay_s` between sends."""

        for i, user in enumerate(users):
            if i and delay_s > 0:
                await asyncio.sleep(delay_s)
            await self.send_message_to(user.user_name, sent.message.retarget(user.user_name))

    # Contact and group operations.

    async def set_remark_name(self, friend: Friend, name: str) -> None:
        await friend.set_remark_name(name)

    async def create_group(self, topic: str, *friends: Friend) -> Group:
        if not friends:
            raise WebWxError("a group needs at least one friend")
        name = await self.caller().create_chat_room(topic, [f.user_name for f in friends])
        fetched = await self.batch_detail([User(user_name=name)])
        group = fetched[0] if fetched else Group(user_name=name, nick_name=topic, owner=self)
        if not isinstance(group, Group):
            group = Group(user_name=name, nick_name=topic, owner=self)
        self.upsert(group)
        return group

    async def add_friends_into_group(self, group: Group, *friends: Friend) -> None:
        await group.add_friends(*friends)

    async def add_friend_into_groups(self, friend: Friend, *groups: Group) -> None:
        await friend.add_into_groups(*groups)

    async def remove_members_from_group(self, group: Group, *users: User) -> None:
        await group.remove_members(*users)
