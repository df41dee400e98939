from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from yarl import URL

from pywebwx import Bot, BotConfig
from pywebwx.domain import DEFAULT_DOMAIN
from pywebwx.login import LoginState
from pywebwx.session import BaseRequest, LoginInfo, SyncKey, SyncKeyItem
from pywebwx.storage import HotReloadItem, InMemoryHotReloadStorage
from pywebwx.transport import CookieDump, HttpResponse
from pywebwx.user import Self
from pywebwx.util import json as wirejson

CGI = "/cgi-bin/mmwebwx-bin"
JSLOGIN = "/jslogin"
CHECK_LOGIN = f"{CGI}/login"
LOGIN_PAGE = f"{CGI}/webwxnewloginpage"
WEBINIT = f"{CGI}/webwxinit"
STATUSNOTIFY = f"{CGI}/webwxstatusnotify"
SYNCCHECK = f"{CGI}/synccheck"
WEBWXSYNC = f"{CGI}/webwxsync"
BATCH = f"{CGI}/webwxbatchgetcontact"
GETCONTACT = f"{CGI}/webwxgetcontact"
SENDMSG = f"{CGI}/webwxsendmsg"
PUSHLOGIN = f"{CGI}/webwxpushloginurl"
LOGOUT = f"{CGI}/webwxlogout"
UPDATECHATROOM = f"{CGI}/webwxupdatechatroom"
CREATECHATROOM = f"{CGI}/webwxcreatechatroom"
OPLOG = f"{CGI}/webwxoplog"
UPLOAD = f"{CGI}/webwxuploadmedia"
SENDAPP = f"{CGI}/webwxsendappmsg"
SENDIMG = f"{CGI}/webwxsendmsgimg"
REVOKE = f"{CGI}/webwxrevokemsg"
VERIFY = f"{CGI}/webwxverifyuser"
GETMSGIMG = f"{CGI}/webwxgetmsgimg"
GETVOICE = f"{CGI}/webwxgetvoice"

REDIRECT_URI = f"https://wx2.qq.com{LOGIN_PAGE}?ticket=T&uuid=4ZcMGGn_ZQ==&lang=zh_CN&scan=1"

LOGIN_XML = (
    "<error><ret>0</ret><message></message><skey>SKEY</skey><wxsid>SID</wxsid>"
    "<wxuin>123</wxuin><pass_ticket>PT</pass_ticket><isgrayscale>1</isgrayscale></error>"
)


@dataclass(slots=True)
class Request:
    method: str
    url: str
    path: str
    params: dict[str, str]
    json: Any = None
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)


Responder = HttpResponse | BaseException | Callable[[Request], Any]


def text(body: str, *, status: int = 200, cookies: Mapping[str, str] | None = None) -> HttpResponse:
    return HttpResponse(
        status=status, url="", body=body.encode("utf-8"), cookies=dict(cookies or {})
    )


def js(obj: Any, *, status: int = 200) -> HttpResponse:
    return HttpResponse(status=status, url="", body=wirejson.dumps_wire(obj).encode("utf-8"))


def ok(**extra: Any) -> HttpResponse:
    return js({"BaseResponse": {"Ret": 0, "ErrMsg": ""}, **extra})


def ret(code: int) -> HttpResponse:
    return js({"BaseResponse": {"Ret": code, "ErrMsg": ""}})


def sync_check(retcode: str = "0", selector: str = "0") -> HttpResponse:
    return text(f'window.synccheck={{retcode:"{retcode}",selector:"{selector}"}}')


def web_init(user_name: str = "@self", nick_name: str = "Me", **extra: Any) -> HttpResponse:
    return ok(
        User={"UserName": user_name, "NickName": nick_name},
        SyncKey={"Count": 1, "List": [{"Key": 1, "Val": 100}]},
        ContactList=[],
        **extra,
    )


class Hang:
    """Responder that parks the request until cancelled, like an idle long poll."""

    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.calls = 0

    async def __call__(self, req: Request) -> HttpResponse:
        self.calls += 1
        self.entered.set()
        await asyncio.Event().wait()
        raise AssertionError("unreachable")


class FakeTransport:
    """
    In-memory transport keyed by URL path.

    Each path holds a queue of responders; the last one is reused once the
    others are consumed. Every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list[Responder]] = {}
        self.requests: list[Request] = []
        self.cookies: dict[str, str] = {}
        self.loaded: CookieDump = {}
        self.closed = False

    def add(self, path: str, *responders: Responder) -> None:
        self.routes.setdefault(path, []).extend(responders)

    def calls(self, path: str) -> list[Request]:
        return [r for r in self.requests if r.path == path]

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Any | None = None,
        data: Any | None = None,
        headers: Mapping[str, str] | None = None,
        timeout_s: float | None = None,
    ) -> HttpResponse:
        await asyncio.sleep(0)
        u = URL(url)
        merged = {**dict(u.query), **dict(params or {})}
        body = wirejson.loads(wirejson.dumps_wire(json)) if json is not None else None
        req = Request(method, url, u.path, merged, body, data, dict(headers or {}))
        self.requests.append(req)

        queue = self.routes.get(u.path)
        if not queue:
            raise AssertionError(f"unexpected request {method} {url}")
        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(responder, BaseException):
            raise responder
        if callable(responder) and not isinstance(responder, HttpResponse):
            result = responder(req)
            if inspect.isawaitable(result):
                result = await result
            responder = result
        assert isinstance(responder, HttpResponse)
        self.cookies.update(responder.cookies)
        return responder

    def cookies_by_origin(self) -> CookieDump:
        return {
            "https://wx2.qq.com": [
                {"name": k, "value": v, "domain": "wx2.qq.com", "path": "/"}
                for k, v in self.cookies.items()
            ]
        }

    def load_cookies(self, dump: Mapping[str, Iterable[Mapping[str, Any]]]) -> None:
        for origin, items in dump.items():
            self.loaded[origin] = [dict(c) for c in items]
            for c in items:
                self.cookies[str(c["name"])] = str(c.get("value") or "")

    def get_cookie(self, name: str) -> str | None:
        return self.cookies.get(name)

    async def close(self) -> None:
        self.closed = True


def make_bot(fake: FakeTransport, **config: Any) -> Bot:
    config.setdefault("sync_retry_delay_s", 0)
    return Bot(BotConfig(**config), transport=fake)


def dump_blob(sync_key_val: int = 0) -> bytes:
    items = (SyncKeyItem(1, sync_key_val),) if sync_key_val else ()
    item = HotReloadItem(
        jar={
            "https://wx2.qq.com": [
                {"name": "wxuin", "value": "123", "domain": "wx2.qq.com", "path": "/"},
                {"name": "webwx_data_ticket", "value": "TICKET", "domain": "qq.com", "path": "/"},
            ]
        },
        base_request=BaseRequest(uin=123, sid="SID", skey="SKEY", device_id="e123456789012345"),
        login_info=LoginInfo(wx_uin=123, wx_sid="SID", skey="SKEY", pass_ticket="PT"),
        domain=DEFAULT_DOMAIN,
        sync_key=SyncKey(items),
        uuid="OLD-UUID",
    )
    return item.dumps()


def storage_with_dump(sync_key_val: int = 0) -> InMemoryHotReloadStorage:
    return InMemoryHotReloadStorage(dump_blob(sync_key_val))


def logged_in_owner(fake: FakeTransport, **config: Any) -> tuple[Bot, Self]:
    """A bot marked as running without going through a login flow."""

    bot = make_bot(fake, **config)
    bot.session.login_info = LoginInfo(wx_uin=123, wx_sid="SID", skey="SKEY", pass_ticket="PT")
    bot.session.base_request = BaseRequest(uin=123, sid="SID", skey="SKEY", device_id="e1")
    bot.set_state(LoginState.RUNNING)
    owner = Self(user_name="@self", nick_name="Me", bot=bot)
    bot.self = owner
    return bot, owner
