from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .constants import Selector
from .domain import DEFAULT_DOMAIN, DomainGroup
from .exceptions import Ret, SessionClosedError


@dataclass(slots=True)
class LoginInfo:
    """Identifiers handed out by the login redirect (`<error>` XML document)."""

    ret: int = 0
    message: str = ""
    wx_uin: int = 0
    wx_sid: str = ""
    skey: str = ""
    pass_ticket: str = ""
    is_gray_scale: int = 0

    @property
    def ok(self) -> bool:
        return self.ret == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "Ret": self.ret,
            "Message": self.message,
            "WxUin": self.wx_uin,
            "WxSid": self.wx_sid,
            "SKey": self.skey,
            "PassTicket": self.pass_ticket,
            "IsGrayScale": self.is_gray_scale,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> LoginInfo:
        return cls(
            ret=int(d.get("Ret") or 0),
            message=str(d.get("Message") or ""),
            wx_uin=int(d.get("WxUin") or 0),
            wx_sid=str(d.get("WxSid") or ""),
            skey=str(d.get("SKey") or ""),
            pass_ticket=str(d.get("PassTicket") or ""),
            is_gray_scale=int(d.get("IsGrayScale") or 0),
        )


@dataclass(slots=True)
class BaseRequest:
    uin: int
    sid: str
    skey: str
    device_id: str

    def to_wire(self) -> dict[str, Any]:
        return {"Uin": self.uin, "Sid": self.sid, "Skey": self.skey, "DeviceID": self.device_id}

    @classmethod
    def from_wire(cls, d: dict[str, Any]) -> BaseRequest:
        return cls(
            uin=int(d.get("Uin") or 0),
            sid=str(d.get("Sid") or ""),
            skey=str(d.get("Skey") or ""),
            device_id=str(d.get("DeviceID") or ""),
        )


@dataclass(frozen=True, slots=True)
class SyncKeyItem:
    key: int
    val: int


@dataclass(frozen=True, slots=True)
class SyncKey:
    """Opaque server cursor, echoed on every sync check and sync pull."""

    items: tuple[SyncKeyItem, ...] = ()

    @property
    def count(self) -> int:
        return len(self.items)

    def flatten(self) -> str:
        return "|".join(f"{item.key}_{item.val}" for item in self.items)

    def to_wire(self) -> dict[str, Any]:
        return {
            "Count": self.count,
            "List": [{"Key": item.key, "Val": item.val} for item in self.items],
        }

    @classmethod
    def from_wire(cls, d: dict[str, Any] | None) -> SyncKey:
        if not d:
            return cls()
        items = tuple(
            SyncKeyItem(key=int(it.get("Key") or 0), val=int(it.get("Val") or 0))
            for it in (d.get("List") or [])
        )
        return cls(items=items)


def base_response_error(envelope: dict[str, Any]) -> Ret | None:
    """Return the `Ret` error carried by a JSON envelope, or None on success."""

    base = envelope.get("BaseResponse") or {}
    code = int(base.get("Ret") or 0)
    if code == 0:
        return None
    return Ret(code, base.get("ErrMsg") or None)


@dataclass(slots=True)
class WebInitResponse:
    user: dict[str, Any]
    sync_key: SyncKey
    contact_list: list[dict[str, Any]] = field(default_factory=list)
    mp_subscribe_msg_list: list[dict[str, Any]] = field(default_factory=list)
    chat_set: str = ""
    skey: str = ""
    system_time: int = 0

    @classmethod
    def from_wire(cls, d: dict[str, Any]) -> WebInitResponse:
        return cls(
            user=dict(d.get("User") or {}),
            sync_key=SyncKey.from_wire(d.get("SyncKey")),
            contact_list=list(d.get("ContactList") or []),
            mp_subscribe_msg_list=list(d.get("MPSubscribeMsgList") or []),
            chat_set=str(d.get("ChatSet") or ""),
            skey=str(d.get("SKey") or ""),
            system_time=int(d.get("SystemTime") or 0),
        )


@dataclass(frozen=True, slots=True)
class SyncCheckResponse:
    retcode: str
    selector: str

    @property
    def success(self) -> bool:
        return self.retcode == "0"

    @property
    def normal(self) -> bool:
        return self.success and self.selector == Selector.NORMAL

    @property
    def has_new_message(self) -> bool:
        return self.success and self.selector == Selector.NEW_MSG

    def error(self) -> Ret | None:
        if self.success:
            return None
        return Ret(int(self.retcode))


@dataclass(slots=True)
class WebWxSyncResponse:
    sync_key: SyncKey
    sync_check_key: SyncKey
    add_msg_list: list[dict[str, Any]] = field(default_factory=list)
    mod_contact_list: list[dict[str, Any]] = field(default_factory=list)
    del_contact_list: list[dict[str, Any]] = field(default_factory=list)
    mod_chat_room_member_list: list[dict[str, Any]] = field(default_factory=list)
    continue_flag: int = 0
    skey: str = ""

    @classmethod
    def from_wire(cls, d: dict[str, Any]) -> WebWxSyncResponse:
        return cls(
            sync_key=SyncKey.from_wire(d.get("SyncKey")),
            sync_check_key=SyncKey.from_wire(d.get("SyncCheckKey")),
            add_msg_list=list(d.get("AddMsgList") or []),
            mod_contact_list=list(d.get("ModContactList") or []),
            del_contact_list=list(d.get("DelContactList") or []),
            mod_chat_room_member_list=list(d.get("ModChatRoomMemberList") or []),
            continue_flag=int(d.get("ContinueFlag") or 0),
            skey=str(d.get("Skey") or ""),
        )


@dataclass(slots=True)
class Session:
    """
    Mutable per-login state.

    Login fills everything; afterwards only the sync engine writes `sync_key`
    and the contact cache.
    """

    login_info: LoginInfo | None = None
    base_request: BaseRequest | None = None
    init_response: WebInitResponse | None = None
    sync_key: SyncKey = field(default_factory=SyncKey)
    domain: DomainGroup = DEFAULT_DOMAIN
    uuid: str = ""

    def require_login(self) -> tuple[LoginInfo, BaseRequest]:
        if self.login_info is None or self.base_request is None:
            raise SessionClosedError("session is not logged in")
        return self.login_info, self.base_request

    def reset(self) -> None:
        self.login_info = None
        self.base_request = None
        self.init_response = None
        self.sync_key = SyncKey()
