from __future__ import annotations

import hashlib
import mimetypes
import time
from collections.abc import Iterable, Mapping, Sequence
from email.utils import formatdate
from typing import Any

import aiohttp
from loguru import logger as log
from yarl import URL

from . import constants as c
from .codec import (
    CheckLoginResponse,
    now_ms,
    parse_check_login,
    parse_login_info,
    parse_sync_check,
    parse_uuid,
)
from .config import BotConfig
from .domain import domain_for_host
from .exceptions import (
    LoginForbiddenError,
    ProtocolError,
    Ret,
    WebWxDataTicketNotFoundError,
)
from .message import SendMessage
from .session import (
    BaseRequest,
    LoginInfo,
    Session,
    SyncCheckResponse,
    WebInitResponse,
    WebWxSyncResponse,
    base_response_error,
)
from .transport import HttpResponse, Transport
from .util import json as wirejson

_LANG = "zh_CN"
_JSON = "json"
_IMAGE_EXTS = frozenset({"bmp", "png", "jpeg", "jpg", "gif"})
_VIDEO_EXTS = frozenset({"mp4"})


def media_type_for(filename: str) -> str:
    """Upload `mediatype` form value for a file name."""

    ext = filename.rpartition(".")[2].lower()
    if ext in _IMAGE_EXTS:
        return "pic"
    if ext in _VIDEO_EXTS:
        return "video"
    return "doc"


def _check(envelope: Any) -> dict[str, Any]:
    if not isinstance(envelope, dict):
        raise ProtocolError("json envelope is not an object")
    err = base_response_error(envelope)
    if err is not None:
        raise err
    return envelope


class Caller:
    """
    Endpoint layer: one coroutine per gateway call.

    Builds URLs against the session's domain group, sends them through the
    transport and turns the response framing into typed results or errors.
    """

    def __init__(self, transport: Transport, config: BotConfig, session: Session) -> None:
        self.transport = transport
        self.config = config
        self.session = session

    # Plumbing.

    def _base(self, path: str) -> str:
        return self.session.domain.base_host + path

    def _file(self, path: str) -> str:
        return self.session.domain.file_host + path

    async def _get(
        self,
        url: str,
        params: Mapping[str, str] | None = None,
        *,
        headers: Mapping[str, str] | None = None,
        timeout_s: float | None = None,
    ) -> HttpResponse:
        resp = await self.transport.request(
            "GET", url, params=params, headers=headers, timeout_s=timeout_s
        )
        resp.raise_for_status()
        return resp

    async def _post_json(
        self, url: str, body: dict[str, Any], params: Mapping[str, str] | None = None
    ) -> dict[str, Any]:
        resp = await self.transport.request("POST", url, params=params, json=body)
        resp.raise_for_status()
        return _check(resp.json())

    def _login(self) -> tuple[LoginInfo, BaseRequest]:
        return self.session.require_login()

    # Login.

    async def get_login_uuid(self) -> str:
        redirect = URL(c.NEW_LOGIN_PAGE_URL)
        if self.config.is_desktop:
            redirect = redirect.with_query(mod="desktop")
        params = {
            "redirect_uri": str(redirect),
            "appid": c.APP_ID,
            "fun": "new",
            "lang": _LANG,
            "_": str(now_ms()),
        }
        resp = await self._get(c.JSLOGIN_URL, params)
        return parse_uuid(resp.text())

    async def check_login(self, uuid: str, tip: str = "0") -> CheckLoginResponse:
        now = int(time.time())
        params = {
            "r": str(now // 1579),
            "_": str(now),
            "loginicon": "true",
            "uuid": uuid,
            "tip": tip,
        }
        resp = await self._get(c.CHECK_LOGIN_URL, params)
        return parse_check_login(resp.text())

    async def get_login_info(self, redirect_uri: str) -> LoginInfo:
        """Follow the post-scan redirect; binds the session to the redirect's domain group."""

        url = URL(redirect_uri).update_query(version="v2")
        headers: dict[str, str] = {}
        if self.config.is_desktop:
            headers["client-version"] = self.config.client_version
            headers["extspam"] = self.config.extspam
        resp = await self.transport.request("GET", str(url), headers=headers)
        resp.raise_for_status()
        if "wxuin" not in resp.cookies:
            msg = "login forbidden"
            if not self.config.is_desktop:
                msg += ": try to login with desktop mode"
            raise LoginForbiddenError(msg)
        info = parse_login_info(resp.body)
        if not info.ok:
            raise Ret(info.ret, info.message or None)
        self.session.domain = domain_for_host(url.host or "")
        log.info("login redirect bound to {}", self.session.domain.domain)
        return info

    async def push_login(self, uin: int) -> str:
        """Ask the phone to confirm a login for `uin`; returns the bound uuid."""

        params = {"uin": str(uin)}
        if self.config.is_desktop:
            params["mod"] = "desktop"
        resp = await self._get(self._base(c.WEBWXPUSHLOGINURL), params)
        d = resp.json()
        ret = str(d.get("ret") or "")
        uuid = str(d.get("uuid") or "")
        if ret != "0":
            if not ret.lstrip("-").isdigit():
                raise ProtocolError(f"push login returned ret={ret!r}")
            raise Ret(int(ret), d.get("msg") or None)
        if not uuid:
            raise ProtocolError("push login returned no uuid")
        return uuid

    async def web_init(self, base_request: BaseRequest) -> WebInitResponse:
        params = {"_": str(int(time.time()))}
        d = await self._post_json(self._base(c.WEBWXINIT), {"BaseRequest": base_request}, params)
        return WebInitResponse.from_wire(d)

    async def status_notify(self, user_name: str) -> None:
        info, br = self._login()
        params = {"lang": _LANG, "pass_ticket": info.pass_ticket}
        body = {
            "BaseRequest": br,
            "ClientMsgId": int(time.time()),
            "Code": int(c.StatusNotifyCode.INITED),
            "FromUserName": user_name,
            "ToUserName": user_name,
        }
        await self._post_json(self._base(c.WEBWXSTATUSNOTIFY), body, params)

    async def logout(self) -> None:
        info, _ = self._login()
        params = {"redirect": "1", "type": "1", "skey": info.skey}
        await self._get(self._base(c.WEBWXLOGOUT), params)

    # Sync.

    async def sync_check(self) -> SyncCheckResponse:
        info, br = self._login()
        params = {
            "r": str(now_ms()),
            "skey": info.skey,
            "sid": info.wx_sid,
            "uin": str(info.wx_uin),
            "deviceid": br.device_id,
            "_": str(now_ms()),
            "synckey": self.session.sync_key.flatten(),
        }
        resp = await self._get(
            self.session.domain.sync_host + c.SYNCCHECK,
            params,
            timeout_s=self.config.sync_check_timeout_s,
        )
        result = parse_sync_check(resp.text())
        log.debug("sync check retcode={} selector={}", result.retcode, result.selector)
        return result

    async def web_wx_sync(self) -> WebWxSyncResponse:
        info, br = self._login()
        params = {"sid": info.wx_sid, "skey": info.skey, "pass_ticket": info.pass_ticket}
        body = {
            "BaseRequest": br,
            "SyncKey": self.session.sync_key,
            "rr": str(int(time.time())),
        }
        d = await self._post_json(self._base(c.WEBWXSYNC), body, params)
        return WebWxSyncResponse.from_wire(d)

    # Contacts.

    async def get_contact(self) -> list[dict[str, Any]]:
        """Page through `webwxgetcontact` until `Seq` is 0 or stops moving."""

        info, _ = self._login()
        members: list[dict[str, Any]] = []
        seq = 0
        while True:
            params = {"r": str(now_ms()), "skey": info.skey, "seq": str(seq)}
            resp = await self._get(self._base(c.WEBWXGETCONTACT), params)
            d = _check(resp.json())
            members.extend(d.get("MemberList") or [])
            next_seq = int(d.get("Seq") or 0)
            if next_seq == 0 or next_seq == seq:
                return members
            seq = next_seq

    async def batch_get_contact(self, items: Sequence[tuple[str, str]]) -> list[dict[str, Any]]:
        """
        Fetch details for up to `MAX_BATCH_CONTACT` users.

        `items` holds `(user_name, encry_chat_room_id)` pairs.
        """

        if len(items) > c.MAX_BATCH_CONTACT:
            raise ValueError(f"at most {c.MAX_BATCH_CONTACT} users per batch")
        _, br = self._login()
        params = {"type": "ex", "r": str(now_ms())}
        body = {
            "BaseRequest": br,
            "Count": len(items),
            "List": [{"UserName": u, "EncryChatRoomId": e} for u, e in items],
        }
        d = await self._post_json(self._base(c.WEBWXBATCHGETCONTACT), body, params)
        return list(d.get("ContactList") or [])

    async def remark(self, user_name: str, remark_name: str) -> None:
        _, br = self._login()
        body = {
            "BaseRequest": br,
            "CmdId": int(c.OplogCmd.MOD_REMARK_NAME),
            "RemarkName": remark_name,
            "UserName": user_name,
        }
        await self._post_json(self._base(c.WEBWXOPLOG), body, {"lang": _LANG})

    async def relation_pin(self, user_name: str, remark_name: str, pinned: bool) -> None:
        _, br = self._login()
        body = {
            "BaseRequest": br,
            "CmdId": int(c.OplogCmd.TOP_CONTACT),
            "OP": 1 if pinned else 0,
            "RemarkName": remark_name,
            "UserName": user_name,
        }
        await self._post_json(self._base(c.WEBWXOPLOG), body)

    async def verify_user(self, user_name: str, ticket: str, verify_content: str = "") -> None:
        info, br = self._login()
        params = {"r": str(now_ms()), "lang": _LANG, "pass_ticket": info.pass_ticket}
        body = {
            "BaseRequest": br,
            "Opcode": 3,
            "SceneList": [33],
            "SceneListCount": 1,
            "VerifyContent": verify_content,
            "VerifyUserList": [{"Value": user_name, "VerifyUserTicket": ticket}],
            "VerifyUserListSize": 1,
            "skey": info.skey,
        }
        await self._post_json(self._base(c.WEBWXVERIFYUSER), body, params)

    async def get_head_img(self, user_name: str, head_img_url: str = "", chat_room_id: str = "") -> bytes:
        if head_img_url:
            resp = await self._get(self._base(head_img_url))
            return resp.body
        info, _ = self._login()
        params = {
            "username": user_name,
            "skey": info.skey,
            "type": "big",
            "chatroomid": chat_room_id,
            "seq": "0",
        }
        resp = await self._get(self._base(c.WEBWXGETICON), params)
        return resp.body

    # Groups.

    async def create_chat_room(self, topic: str, user_names: Sequence[str]) -> str:
        info, br = self._login()
        params = {"pass_ticket": info.pass_ticket, "r": str(int(time.time()))}
        body = {
            "BaseRequest": br,
            "MemberCount": len(user_names),
            "MemberList": [{"UserName": u} for u in user_names],
            "Topic": topic,
        }
        d = await self._post_json(self._base(c.WEBWXCREATECHATROOM), body, params)
        name = str(d.get("ChatRoomName") or "")
        if not name:
            raise ProtocolError("create chat room returned no ChatRoomName")
        return name

    async def rename_chat_room(self, chat_room: str, topic: str) -> None:
        info, br = self._login()
        params = {"fun": "modtopic", "pass_ticket": info.pass_ticket}
        body = {"BaseRequest": br, "ChatRoomName": chat_room, "NewTopic": topic}
        await self._post_json(self._base(c.WEBWXUPDATECHATROOM), body, params)

    async def add_chat_room_members(
        self, chat_room: str, user_names: Iterable[str], *, invite: bool = False
    ) -> None:
        info, br = self._login()
        fun, field = ("invitemember", "InviteMemberList") if invite else ("addmember", "AddMemberList")
        params = {"fun": fun, "pass_ticket": info.pass_ticket, "lang": _LANG}
        body = {"ChatRoomName": chat_room, "BaseRequest": br, field: ",".join(user_names)}
        await self._post_json(self._base(c.WEBWXUPDATECHATROOM), body, params)

    async def remove_chat_room_members(self, chat_room: str, user_names: Iterable[str]) -> None:
        # The gateway accepts this call but does not reliably remove anyone.
        info, br = self._login()
        params = {"fun": "delmember", "lang": _LANG, "pass_ticket": info.pass_ticket}
        body = {"ChatRoomName": chat_room, "BaseRequest": br, "DelMemberList": ",".join(user_names)}
        await self._post_json(self._base(c.WEBWXUPDATECHATROOM), body, params)

    # Messages.

    async def _send(self, path: str, msg: SendMessage, params: Mapping[str, str]) -> str:
        _, br = self._login()
        body = {"BaseRequest": br, "Msg": msg, "Scene": 0}
        d = await self._post_json(self._base(path), body, params)
        return str(d.get("MsgID") or "")

    async def send_text(self, msg: SendMessage) -> str:
        info, _ = self._login()
        msg.type = c.MsgType.TEXT
        return await self._send(c.WEBWXSENDMSG, msg, {"lang": _LANG, "pass_ticket": info.pass_ticket})

    async def send_image(self, msg: SendMessage) -> str:
        info, _ = self._login()
        msg.type = c.MsgType.IMAGE
        params = {"fun": "async", "f": _JSON, "lang": _LANG, "pass_ticket": info.pass_ticket}
        return await self._send(c.WEBWXSENDMSGIMG, msg, params)

    async def send_app(self, msg: SendMessage) -> str:
        msg.type = c.AppMsgType.ATTACH
        return await self._send(c.WEBWXSENDAPPMSG, msg, {"fun": "async", "f": _JSON})

    async def send_video(self, msg: SendMessage) -> str:
        info, _ = self._login()
        msg.type = c.MsgType.VIDEO
        params = {"fun": "async", "f": _JSON, "lang": _LANG, "pass_ticket": info.pass_ticket}
        return await self._send(c.WEBWXSENDVIDEOMSG, msg, params)

    async def send_emoticon(self, msg: SendMessage) -> str:
        info, _ = self._login()
        msg.type = c.MsgType.EMOTICON
        params = {"fun": "sys", "lang": _LANG, "pass_ticket": info.pass_ticket}
        return await self._send(c.WEBWXSENDEMOTICON, msg, params)

    async def upload_media(
        self, data: bytes, filename: str, from_user_name: str, to_user_name: str
    ) -> str:
        """Single-chunk `webwxuploadmedia`; returns the server media id."""

        info, br = self._login()
        ticket = self.transport.get_cookie("webwx_data_ticket")
        if not ticket:
            raise WebWxDataTicketNotFoundError("webwx_data_ticket cookie not found")

        content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        if "." not in filename:
            filename = f"{filename}.{content_type.rpartition('/')[2]}"
        size = len(data)
        upload_request = {
            "UploadType": 2,
            "BaseRequest": br.to_wire(),
            "ClientMediaId": int(time.time()) * 10_000,
            "TotalLen": size,
            "StartPos": 0,
            "DataLen": size,
            "MediaType": 4,
            "FromUserName": from_user_name,
            "ToUserName": to_user_name,
            "FileMd5": hashlib.md5(data).hexdigest(),
        }

        form = aiohttp.FormData()
        form.add_field("uploadmediarequest", wirejson.dumps_wire(upload_request))
        for key, value in (
            ("id", "WU_FILE_0"),
            ("name", filename),
            ("type", content_type),
            ("lastModifiedDate", formatdate(usegmt=True)),
            ("size", str(size)),
            ("mediatype", media_type_for(filename)),
            ("webwx_data_ticket", ticket),
            ("pass_ticket", info.pass_ticket),
        ):
            form.add_field(key, value)
        form.add_field("filename", data, filename=filename, content_type=content_type)

        resp = await self.transport.request(
            "POST", self._file(c.WEBWXUPLOADMEDIA), params={"f": _JSON}, data=form
        )
        resp.raise_for_status()
        d = _check(resp.json())
        media_id = str(d.get("MediaId") or "")
        if not media_id:
            raise ProtocolError("upload returned no MediaId")
        return media_id

    async def revoke(self, client_msg_id: str, svr_msg_id: str, to_user_name: str) -> None:
        _, br = self._login()
        body = {
            "BaseRequest": br,
            "ClientMsgId": client_msg_id,
            "SvrMsgId": svr_msg_id,
            "ToUserName": to_user_name,
        }
        await self._post_json(self._base(c.WEBWXREVOKEMSG), body)

    async def status_as_read(self, *, from_user_name: str, to_user_name: str) -> None:
        info, br = self._login()
        body = {
            "BaseRequest": br,
            "DeviceID": br.device_id,
            "Sid": br.sid,
            "Skey": br.skey,
            "Uin": info.wx_uin,
            "ClientMsgId": int(time.time()),
            "Code": int(c.StatusNotifyCode.READED),
            "FromUserName": from_user_name,
            "ToUserName": to_user_name,
        }
        await self._post_json(self._base(c.WEBWXSTATUSNOTIFY), body)

    # Media fetch.

    async def get_msg_img(self, msg_id: str) -> bytes:
        info, _ = self._login()
        resp = await self._get(self._base(c.WEBWXGETMSGIMG), {"MsgID": msg_id, "skey": info.skey})
        return resp.body

    async def _get_ranged(self, path: str, msg_id: str) -> bytes:
        info, _ = self._login()
        params = {"msgid": msg_id, "skey": info.skey}
        referer = str(URL(self._base(path)).with_query(params))
        resp = await self._get(
            self._base(path), params, headers={"Referer": referer, "Range": "bytes=0-"}
        )
        return resp.body

    async def get_voice(self, msg_id: str) -> bytes:
        return await self._get_ranged(c.WEBWXGETVOICE, msg_id)

    async def get_video(self, msg_id: str) -> bytes:
        return await self._get_ranged(c.WEBWXGETVIDEO, msg_id)

    async def get_media(self, sender: str, media_id: str, encry_file_name: str) -> bytes:
        info, _ = self._login()
        ticket = self.transport.get_cookie("webwx_data_ticket")
        if not ticket:
            raise WebWxDataTicketNotFoundError("webwx_data_ticket cookie not found")
        params = {
            "sender": sender,
            "mediaid": media_id,
            "encryfilename": encry_file_name,
            "fromuser": str(info.wx_uin),
            "pass_ticket": info.pass_ticket,
            "webwx_data_ticket": ticket,
        }
        resp = await self._get(
            self._file(c.WEBWXGETMEDIA),
            params,
            headers={"Referer": self.session.domain.base_host + "/"},
        )
        return resp.body
