from __future__ import annotations

import threading
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .codec import file_ext, local_message_id, parse_xml_content
from .constants import (
    APP_MESSAGE_APP_ID,
    FRIEND_REQUEST_SENDER,
    AppMsgType,
    MsgType,
)
from .exceptions import NoSuchUserError, WebWxError

if TYPE_CHECKING:
    from .bot import Bot
    from .user import Group, Self, User

_TRANSFER_FILE_NAME = "微信转账"
_SEND_RED_PACKET = "发出红包，请在手机上查看"
_RECEIVE_RED_PACKET = "收到红包，请在手机上查看"


@dataclass(slots=True)
class RecommendInfo:
    """Attached to friend requests and shared cards."""

    user_name: str = ""
    nick_name: str = ""
    ticket: str = ""
    content: str = ""
    alias: str = ""
    province: str = ""
    city: str = ""
    signature: str = ""
    sex: int = 0
    scene: int = 0
    op_code: int = 0
    verify_flag: int = 0
    attr_status: int = 0
    qq_num: int = 0

    @classmethod
    def from_wire(cls, d: dict[str, Any] | None) -> RecommendInfo:
        d = d or {}
        return cls(
            user_name=str(d.get("UserName") or ""),
            nick_name=str(d.get("NickName") or ""),
            ticket=str(d.get("Ticket") or ""),
            content=str(d.get("Content") or ""),
            alias=str(d.get("Alias") or ""),
            province=str(d.get("Province") or ""),
            city=str(d.get("City") or ""),
            signature=str(d.get("Signature") or ""),
            sex=int(d.get("Sex") or 0),
            scene=int(d.get("Scene") or 0),
            op_code=int(d.get("OpCode") or 0),
            verify_flag=int(d.get("VerifyFlag") or 0),
            attr_status=int(d.get("AttrStatus") or 0),
            qq_num=int(d.get("QQNum") or 0),
        )


@dataclass(slots=True)
class Card:
    """Contact card carried by a `SHARECARD` message."""

    user_name: str
    nick_name: str
    alias: str = ""
    province: str = ""
    city: str = ""
    sign: str = ""
    sex: int = 0
    scene: int = 0
    big_head_img_url: str = ""
    small_head_img_url: str = ""
    region_code: str = ""
    attrs: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class FriendAddMessage:
    from_user_name: str
    from_nick_name: str
    encrypt_user_name: str = ""
    content: str = ""
    ticket: str = ""
    alias: str = ""
    province: str = ""
    city: str = ""
    sign: str = ""
    sex: int = 0
    scene: int = 0
    big_head_img_url: str = ""
    small_head_img_url: str = ""
    attrs: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class RevokeMsg:
    type: str
    old_msg_id: int
    msg_id: int
    session: str
    replace_msg: str


def _int(value: str | None) -> int:
    try:
        return int(value or 0)
    except ValueError:
        return 0


def _child_text(root: ET.Element, path: str) -> str:
    node = root.find(path)
    return (node.text or "").strip() if node is not None else ""


def parse_card(content: str) -> Card:
    a = dict(parse_xml_content(content).attrib)
    return Card(
        user_name=a.get("username", ""),
        nick_name=a.get("nickname", ""),
        alias=a.get("alias", ""),
        province=a.get("province", ""),
        city=a.get("city", ""),
        sign=a.get("sign", ""),
        sex=_int(a.get("sex")),
        scene=_int(a.get("scene")),
        big_head_img_url=a.get("bigheadimgurl", ""),
        small_head_img_url=a.get("smallheadimgurl", ""),
        region_code=a.get("regionCode", ""),
        attrs=a,
    )


def parse_friend_add(content: str) -> FriendAddMessage:
    a = dict(parse_xml_content(content).attrib)
    return FriendAddMessage(
        from_user_name=a.get("fromusername", ""),
        from_nick_name=a.get("fromnickname", ""),
        encrypt_user_name=a.get("encryptusername", ""),
        content=a.get("content", ""),
        ticket=a.get("ticket", ""),
        alias=a.get("alias", ""),
        province=a.get("province", ""),
        city=a.get("city", ""),
        sign=a.get("sign", ""),
        sex=_int(a.get("sex")),
        scene=_int(a.get("scene")),
        big_head_img_url=a.get("bigheadimgurl", ""),
        small_head_img_url=a.get("smallheadimgurl", ""),
        attrs=a,
    )


def parse_revoke(content: str) -> RevokeMsg:
    root = parse_xml_content(content)
    return RevokeMsg(
        type=root.attrib.get("type", ""),
        old_msg_id=_int(_child_text(root, "revokemsg/oldmsgid")),
        msg_id=_int(_child_text(root, "revokemsg/msgid")),
        session=_child_text(root, "revokemsg/session"),
        replace_msg=_child_text(root, "revokemsg/replacemsg"),
    )


def build_file_app_message(title: str, attach_id: str, total_len: int) -> str:
    """`<appmsg>` document announcing an uploaded attachment."""

    root = ET.Element("appmsg", {"appid": APP_MESSAGE_APP_ID, "sdkver": ""})
    ET.SubElement(root, "title").text = title
    ET.SubElement(root, "des").text = ""
    ET.SubElement(root, "action").text = ""
    ET.SubElement(root, "type").text = str(int(AppMsgType.ATTACH))
    ET.SubElement(root, "content").text = ""
    ET.SubElement(root, "url").text = ""
    ET.SubElement(root, "lowurl").text = ""
    ET.SubElement(root, "extinfo").text = ""
    attach = ET.SubElement(root, "appattach")
    ET.SubElement(attach, "totallen").text = str(total_len)
    ET.SubElement(attach, "attachid").text = attach_id
    ET.SubElement(attach, "fileext").text = file_ext(title)
    return ET.tostring(root, encoding="unicode", short_empty_elements=False)


class Message:
    """
    One inbound message from `AddMsgList`.

    Wire fields are exposed in snake_case. The intake pipeline fills
    `raw_content`, `sender_user_name_in_group` and `is_at`.
    """

    def __init__(self, raw: dict[str, Any], *, bot: Bot | None = None) -> None:
        self.raw = dict(raw)
        self.bot = bot

        self.msg_id = str(raw.get("MsgId") or "")
        self.new_msg_id = int(raw.get("NewMsgId") or 0)
        self.msg_type = int(raw.get("MsgType") or 0)
        self.content = str(raw.get("Content") or "")
        self.from_user_name = str(raw.get("FromUserName") or "")
        self.to_user_name = str(raw.get("ToUserName") or "")
        self.create_time = int(raw.get("CreateTime") or 0)
        self.status = int(raw.get("Status") or 0)
        self.status_notify_code = int(raw.get("StatusNotifyCode") or 0)
        self.status_notify_user_name = str(raw.get("StatusNotifyUserName") or "")
        self.app_msg_type = int(raw.get("AppMsgType") or 0)
        self.sub_msg_type = int(raw.get("SubMsgType") or 0)
        self.img_width = int(raw.get("ImgWidth") or 0)
        self.img_height = int(raw.get("ImgHeight") or 0)
        self.voice_length = int(raw.get("VoiceLength") or 0)
        self.play_length = int(raw.get("PlayLength") or 0)
        self.media_id = str(raw.get("MediaId") or "")
        self.encry_file_name = str(raw.get("EncryFileName") or "")
        self.file_name = str(raw.get("FileName") or "")
        self.file_size = str(raw.get("FileSize") or "")
        self.url = str(raw.get("Url") or "")
        self.ticket = str(raw.get("Ticket") or "")
        self.ori_content = str(raw.get("OriContent") or "")
        self.forward_flag = int(raw.get("ForwardFlag") or 0)
        self.recommend_info = RecommendInfo.from_wire(raw.get("RecommendInfo"))

        self.raw_content = self.content
        self.sender_user_name_in_group = ""
        self.is_at = False

        self._items: dict[str, Any] = {}
        self._items_lock = threading.Lock()

    def __repr__(self) -> str:
        return (
            f"Message(msg_id={self.msg_id!r}, type={self.msg_type}, "
            f"from={self.from_user_name!r}, to={self.to_user_name!r})"
        )

    # Context shared along a handler chain.

    def set(self, key: str, value: Any) -> None:
        with self._items_lock:
            self._items[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        with self._items_lock:
            return self._items.get(key, default)

    def has(self, key: str) -> bool:
        with self._items_lock:
            return key in self._items

    # Sender classification.

    def _self_user_name(self) -> str:
        if self.bot is None or self.bot.self is None:
            return ""
        return self.bot.self.user_name

    @property
    def is_send_by_self(self) -> bool:
        return bool(self.from_user_name) and self.from_user_name == self._self_user_name()

    @property
    def is_send_by_group(self) -> bool:
        return self.from_user_name.startswith("@@") or (
            self.is_send_by_self and self.to_user_name.startswith("@@")
        )

    @property
    def is_send_by_friend(self) -> bool:
        return not self.is_send_by_group and self.from_user_name.startswith("@") and not (
            self.is_send_by_self
        )

    @property
    def group_user_name(self) -> str:
        """User name of the group this message belongs to, or "" for 1:1 chats."""

        if self.from_user_name.startswith("@@"):
            return self.from_user_name
        if self.is_send_by_self and self.to_user_name.startswith("@@"):
            return self.to_user_name
        return ""

    # Type predicates.

    def is_text(self) -> bool:
        return self.msg_type == MsgType.TEXT and not self.url

    def is_map(self) -> bool:
        return self.msg_type == MsgType.TEXT and bool(self.url)

    def is_picture(self) -> bool:
        return self.msg_type in (MsgType.IMAGE, MsgType.EMOTICON)

    def is_emoticon(self) -> bool:
        return self.msg_type == MsgType.EMOTICON

    def is_voice(self) -> bool:
        return self.msg_type == MsgType.VOICE

    def is_friend_add(self) -> bool:
        return self.msg_type == MsgType.VERIFYMSG and self.from_user_name == FRIEND_REQUEST_SENDER

    def is_card(self) -> bool:
        return self.msg_type == MsgType.SHARECARD

    def is_video(self) -> bool:
        return self.msg_type in (MsgType.VIDEO, MsgType.MICROVIDEO)

    def is_media(self) -> bool:
        return self.msg_type == MsgType.APP

    def is_recalled(self) -> bool:
        return self.msg_type == MsgType.RECALLED

    def is_system(self) -> bool:
        return self.msg_type == MsgType.SYS

    def is_notify(self) -> bool:
        return self.msg_type == MsgType.STATUSNOTIFY and self.status_notify_code != 0

    def is_status_notify(self) -> bool:
        return self.msg_type == MsgType.STATUSNOTIFY

    def is_sys_notice(self) -> bool:
        return self.msg_type == MsgType.SYSNOTICE

    def is_transfer_accounts(self) -> bool:
        return self.is_media() and self.file_name == _TRANSFER_FILE_NAME

    def is_send_red_packet(self) -> bool:
        return self.is_system() and self.content == _SEND_RED_PACKET

    def is_receive_red_packet(self) -> bool:
        return self.is_system() and self.content == _RECEIVE_RED_PACKET

    def has_file(self) -> bool:
        return self.is_picture() or self.is_voice() or self.is_video() or self.is_media()

    # Structured content.

    def card(self) -> Card:
        if not self.is_card():
            raise WebWxError("card message required")
        return parse_card(self.content)

    def friend_add_message(self) -> FriendAddMessage:
        if not self.is_friend_add():
            raise WebWxError("friend add message required")
        return parse_friend_add(self.content)

    def revoke_msg(self) -> RevokeMsg:
        if not self.is_recalled():
            raise WebWxError("recalled message required")
        return parse_revoke(self.content)

    # Operations bound to the owning bot.

    def _bot(self) -> Bot:
        if self.bot is None:
            raise WebWxError("message is not bound to a bot")
        return self.bot

    async def sender(self) -> User:
        owner = self._bot().get_current_user()
        if self.is_send_by_self:
            return owner
        return await owner.member_by_user_name(self.from_user_name, fetch=True)

    async def sender_in_group(self) -> User:
        if not self.is_send_by_group:
            raise WebWxError("message is not from group")
        owner = self._bot().get_current_user()
        if self.is_send_by_self:
            return owner
        group = await owner.group_by_user_name(self.group_user_name, fetch=True)
        member = group.member_by_user_name(self.sender_user_name_in_group)
        if member is None:
            await group.refresh()
            member = group.member_by_user_name(self.sender_user_name_in_group)
        if member is None:
            raise NoSuchUserError(self.sender_user_name_in_group)
        return member

    async def receiver(self) -> User:
        owner = self._bot().get_current_user()
        if self.is_send_by_group and not self.is_send_by_self:
            group = await owner.group_by_user_name(self.from_user_name, fetch=True)
            member = group.member_by_user_name(self.to_user_name)
            if member is not None:
                return member
        if self.to_user_name == owner.user_name:
            return owner
        return await owner.member_by_user_name(self.to_user_name, fetch=True)

    def _reply_target(self) -> str:
        if self.is_send_by_self:
            return self.to_user_name
        return self.from_user_name

    async def reply(self, msg_type: int, content: str, media_id: str = "") -> SentMessage:
        owner = self._bot().get_current_user()
        msg = SendMessage(
            type=msg_type,
            content=content,
            from_user_name=owner.user_name,
            to_user_name=self._reply_target(),
            media_id=media_id,
        )
        return await owner.send_message_to(self._reply_target(), msg)

    async def reply_text(self, content: str) -> SentMessage:
        return await self.reply(MsgType.TEXT, content)

    async def reply_image(self, data: bytes, filename: str = "image.png") -> SentMessage:
        owner = self._bot().get_current_user()
        return await owner.send_image_to(self._reply_target(), data, filename)

    async def reply_file(self, data: bytes, filename: str) -> SentMessage:
        owner = self._bot().get_current_user()
        return await owner.send_file_to(self._reply_target(), data, filename)

    async def get_file(self) -> bytes:
        if not self.has_file():
            raise WebWxError("invalid message type")
        caller = self._bot().caller
        if self.is_picture():
            return await caller.get_msg_img(self.msg_id)
        if self.is_voice():
            return await caller.get_voice(self.msg_id)
        if self.is_video():
            return await caller.get_video(self.msg_id)
        return await caller.get_media(self.from_user_name, self.media_id, self.encry_file_name)

    async def agree(self, verify_content: str = "") -> None:
        if not self.is_friend_add():
            raise WebWxError("friend add message required")
        await self._bot().caller.verify_user(
            self.recommend_info.user_name, self.recommend_info.ticket, verify_content
        )

    async def mark_as_read(self) -> None:
        await self._bot().caller.status_as_read(
            from_user_name=self.to_user_name, to_user_name=self.from_user_name
        )


@dataclass(slots=True)
class SendMessage:
    type: int
    content: str
    from_user_name: str
    to_user_name: str
    media_id: str = ""
    local_id: str = field(default_factory=local_message_id)
    client_msg_id: str = ""

    def __post_init__(self) -> None:
        if not self.client_msg_id:
            self.client_msg_id = self.local_id

    @classmethod
    def text(cls, content: str, from_user_name: str, to_user_name: str) -> SendMessage:
        return cls(MsgType.TEXT, content, from_user_name, to_user_name)

    @classmethod
    def media(cls, msg_type: int, from_user_name: str, to_user_name: str, media_id: str) -> SendMessage:
        return cls(msg_type, "", from_user_name, to_user_name, media_id=media_id)

    def retarget(self, to_user_name: str) -> SendMessage:
        return SendMessage(
            type=self.type,
            content=self.content,
            from_user_name=self.from_user_name,
            to_user_name=to_user_name,
            media_id=self.media_id,
        )

    def to_wire(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "Type": int(self.type),
            "Content": self.content,
            "FromUserName": self.from_user_name,
            "ToUserName": self.to_user_name,
            "LocalID": self.local_id,
            "ClientMsgId": self.client_msg_id,
        }
        if self.media_id:
            d["MediaId"] = self.media_id
        return d


@dataclass(slots=True)
class SentMessage:
    """A message the gateway accepted; `msg_id` is the server-side id."""

    message: SendMessage
    msg_id: str
    local_id: str = ""
    owner: Self | None = None

    async def revoke(self) -> None:
        if self.owner is None:
            raise WebWxError("sent message is not bound to a user")
        await self.owner.revoke_message(self)

    async def forward_to(self, *users: User, delay_s: float = 0.5) -> None:
        if self.owner is None:
            raise WebWxError("sent message is not bound to a user")
        await self.owner.forward_message(self, *users, delay_s=delay_s)

    async def forward_to_groups(self, *groups: Group, delay_s: float = 0.5) -> None:
        await self.forward_to(*groups, delay_s=delay_s)
