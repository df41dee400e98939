from __future__ import annotations

import asyncio
from typing import Any

import pytest
from fakes import (
    CHECK_LOGIN,
    JSLOGIN,
    LOGIN_PAGE,
    LOGIN_XML,
    PUSHLOGIN,
    REDIRECT_URI,
    STATUSNOTIFY,
    SYNCCHECK,
    WEBINIT,
    FakeTransport,
    Hang,
    js,
    make_bot,
    ok,
    ret,
    storage_with_dump,
    text,
    web_init,
)

from pywebwx import Bot, BotConfig, LoginOption, RetryLoginOption, SyncReloadDataLoginOption
from pywebwx.codec import CheckLoginResponse
from pywebwx.constants import LoginCode
from pywebwx.exceptions import (
    LoginForbiddenError,
    LoginTimeoutError,
    ProtocolError,
    Ret,
    SessionClosedError,
    WebWxError,
)
from pywebwx.login import LoginChecker, LoginState
from pywebwx.storage import HotReloadItem, InMemoryHotReloadStorage

UUID = "4ZcMGGn_ZQ=="
WAIT = text("window.code=408;")
SCANNED = text("window.code=201;window.userAvatar = 'data:img/jpg;base64,AAAA';")
CONFIRMED = text(f'window.code=200;\nwindow.redirect_uri="{REDIRECT_URI}";')
EXPIRED = text("window.code=400;")


def _record(bot: Bot, *events: str) -> dict[str, list[Any]]:
    seen: dict[str, list[Any]] = {e: [] for e in events}
    for event in events:
        bot.on(event, seen[event].append)
    return seen


def _session_routes(fake: FakeTransport) -> Hang:
    fake.add(LOGIN_PAGE, text(LOGIN_XML, cookies={"wxuin": "123", "wxsid": "SID"}))
    fake.add(WEBINIT, web_init())
    fake.add(STATUSNOTIFY, ok())
    hang = Hang()
    fake.add(SYNCCHECK, hang)
    return hang


def _scan_routes(fake: FakeTransport, *polls) -> Hang:
    fake.add(JSLOGIN, text(f'window.QRLogin.code = 200; window.QRLogin.uuid = "{UUID}";'))
    fake.add(CHECK_LOGIN, *polls)
    return _session_routes(fake)


@pytest.mark.asyncio
async def test_scan_login_happy_path() -> None:
    fake = FakeTransport()
    hang = _scan_routes(fake, WAIT, WAIT, SCANNED, CONFIRMED)
    bot = make_bot(fake)
    seen = _record(bot, "uuid", "scan", "login")

    await bot.login()

    assert seen["uuid"] == [UUID]
    assert len(seen["scan"]) == 1
    assert seen["scan"][0].avatar == "data:img/jpg;base64,AAAA"
    assert len(seen["login"]) == 1

    polls = fake.calls(CHECK_LOGIN)
    assert len(polls) == 4
    assert {p.params["tip"] for p in polls} == {"0"}
    assert all(p.params["uuid"] == UUID for p in polls)

    (redirect,) = fake.calls(LOGIN_PAGE)
    assert redirect.params["version"] == "v2"
    assert redirect.params["ticket"] == "T"

    assert bot.uuid == UUID
    assert bot.state == LoginState.RUNNING
    assert bot.alive
    assert not bot.is_hot
    assert bot.session.domain.domain == "wx2.qq.com"
    assert bot.get_current_user().nick_name == "Me"
    assert bot.session.sync_key.flatten() == "1_100"
    assert bot.config.device_id is not None

    (init,) = fake.calls(WEBINIT)
    assert init.json["BaseRequest"]["Uin"] == 123
    assert init.json["BaseRequest"]["DeviceID"] == bot.config.device_id
    (notify,) = fake.calls(STATUSNOTIFY)
    assert notify.json["Code"] == 3
    assert notify.json["FromUserName"] == notify.json["ToUserName"] == "@self"

    await asyncio.wait_for(hang.entered.wait(), 1)
    (check,) = fake.calls(SYNCCHECK)
    assert check.params["synckey"] == "1_100"
    assert check.url.startswith("https://webpush.wx2.qq.com/")

    await bot.exit()
    assert bot.state == LoginState.STOPPED
    assert await bot.block() is None


@pytest.mark.asyncio
async def test_qr_expiry_after_repeated_waits() -> None:
    fake = FakeTransport()
    _scan_routes(fake, *([WAIT] * 5), EXPIRED)
    bot = make_bot(fake)

    with pytest.raises(LoginTimeoutError):
        await bot.login()

    assert len(fake.calls(CHECK_LOGIN)) == 6
    assert fake.calls(LOGIN_PAGE) == []
    assert bot.self is None
    assert bot.state == LoginState.UNINIT
    with pytest.raises(SessionClosedError):
        await bot.block()


@pytest.mark.asyncio
async def test_login_forbidden_without_wxuin_cookie() -> None:
    fake = FakeTransport()
    fake.add(JSLOGIN, text(f'window.QRLogin.uuid = "{UUID}";'))
    fake.add(CHECK_LOGIN, CONFIRMED)
    fake.add(LOGIN_PAGE, text(LOGIN_XML))
    bot = make_bot(fake)

    with pytest.raises(LoginForbiddenError, match="desktop mode"):
        await bot.login()
    assert fake.calls(WEBINIT) == []


@pytest.mark.asyncio
async def test_desktop_mode_headers() -> None:
    fake = FakeTransport()
    _scan_routes(fake, CONFIRMED)
    bot = Bot.desktop(BotConfig(extspam="SPAM==", sync_retry_delay_s=0), transport=fake)

    await bot.login()

    (jslogin,) = fake.calls(JSLOGIN)
    assert jslogin.params["redirect_uri"].endswith("webwxnewloginpage?mod=desktop")
    (redirect,) = fake.calls(LOGIN_PAGE)
    assert redirect.headers == {"client-version": "2.0.0", "extspam": "SPAM=="}
    await bot.exit()


@pytest.mark.asyncio
async def test_hot_login_resumes_without_qr() -> None:
    fake = FakeTransport()
    _session_routes(fake)
    storage = storage_with_dump()
    bot = make_bot(fake)
    seen = _record(bot, "uuid", "login")

    await bot.hot_login(storage)

    assert seen == {"uuid": [], "login": []}
    assert fake.calls(JSLOGIN) == []
    assert bot.is_hot
    assert bot.state == LoginState.RUNNING
    assert fake.get_cookie("webwx_data_ticket") == "TICKET"
    (init,) = fake.calls(WEBINIT)
    assert init.json["BaseRequest"]["DeviceID"] == "e123456789012345"

    dumped = HotReloadItem.loads(storage.data)
    assert dumped.sync_key.flatten() == "1_100"
    assert dumped.login_info.wx_uin == 123
    await bot.exit()


@pytest.mark.asyncio
async def test_hot_login_keeps_dumped_cursor() -> None:
    fake = FakeTransport()
    _session_routes(fake)
    bot = make_bot(fake)

    await bot.hot_login(storage_with_dump(sync_key_val=77))

    assert bot.session.sync_key.flatten() == "1_77"
    await bot.exit()


@pytest.mark.asyncio
async def test_expired_hot_login_without_retry() -> None:
    fake = FakeTransport()
    fake.add(WEBINIT, ret(1102))
    bot = make_bot(fake)

    with pytest.raises(Ret) as ei:
        await bot.hot_login(storage_with_dump())

    assert ei.value == Ret(1102)
    assert bot.state == LoginState.UNINIT
    assert fake.calls(JSLOGIN) == []


@pytest.mark.asyncio
async def test_expired_hot_login_falls_back_to_scan() -> None:
    fake = FakeTransport()
    fake.add(WEBINIT, ret(1102))
    _scan_routes(fake, CONFIRMED)
    bot = make_bot(fake)
    seen = _record(bot, "uuid", "login")
    storage = storage_with_dump()

    await bot.hot_login(storage, retry=True)

    assert seen["uuid"] == [UUID]
    assert len(seen["login"]) == 1
    assert len(fake.calls(WEBINIT)) == 2
    assert bot.state == LoginState.RUNNING
    assert bot.uuid == UUID
    assert HotReloadItem.loads(storage.data).uuid == UUID
    await bot.exit()


@pytest.mark.asyncio
async def test_empty_storage_is_a_login_error() -> None:
    bot = make_bot(FakeTransport())
    with pytest.raises(WebWxError):
        await bot.hot_login(InMemoryHotReloadStorage())
    assert bot.state == LoginState.UNINIT


@pytest.mark.asyncio
async def test_push_login() -> None:
    fake = FakeTransport()
    fake.add(PUSHLOGIN, js({"ret": "0", "msg": "all ok", "uuid": "PUSH-UUID"}))
    fake.add(CHECK_LOGIN, WAIT, CONFIRMED)
    _session_routes(fake)
    bot = make_bot(fake)
    seen = _record(bot, "uuid", "scan", "login")

    await bot.push_login(storage_with_dump())

    (push,) = fake.calls(PUSHLOGIN)
    assert push.params["uin"] == "123"
    assert push.url.startswith("https://wx2.qq.com/")
    assert [p.params["tip"] for p in fake.calls(CHECK_LOGIN)] == ["1", "0"]
    assert seen["uuid"] == []
    assert seen["scan"] == []
    assert len(seen["login"]) == 1
    assert bot.uuid == "PUSH-UUID"
    assert bot.state == LoginState.RUNNING
    await bot.exit()


@pytest.mark.asyncio
async def test_push_login_rejected() -> None:
    fake = FakeTransport()
    fake.add(PUSHLOGIN, js({"ret": "1", "msg": "not supported"}))
    bot = make_bot(fake)

    with pytest.raises(Ret) as ei:
        await bot.push_login(storage_with_dump())
    assert ei.value.code == 1
    assert fake.calls(CHECK_LOGIN) == []


class _Recorder(LoginOption):
    def __init__(self, swallow: bool = False) -> None:
        self.calls: list[str] = []
        self.swallow = swallow

    async def prepare(self, bot: Bot) -> None:
        self.calls.append("prepare")

    async def on_error(self, bot: Bot, err: BaseException) -> BaseException | None:
        self.calls.append(f"error:{type(err).__name__}")
        return None if self.swallow else err

    async def on_success(self, bot: Bot) -> None:
        self.calls.append("success")


@pytest.mark.asyncio
async def test_login_options_run_around_the_attempt() -> None:
    fake = FakeTransport()
    _session_routes(fake)
    bot = make_bot(fake)
    opt = _Recorder()

    await bot.hot_login(storage_with_dump(), opt)

    assert opt.calls == ["prepare", "success"]
    await bot.exit()


@pytest.mark.asyncio
async def test_swallowing_option_stops_error_chain() -> None:
    fake = FakeTransport()
    fake.add(WEBINIT, ret(1101))
    bot = make_bot(fake)
    first, second = _Recorder(swallow=True), _Recorder()

    await bot.hot_login(storage_with_dump(), first, second)

    assert first.calls == ["prepare", "error:Ret"]
    assert second.calls == ["prepare"]
    assert bot.state == LoginState.UNINIT


@pytest.mark.asyncio
async def test_retry_option_falls_back_to_scan() -> None:
    fake = FakeTransport()
    fake.add(WEBINIT, ret(1102))
    _scan_routes(fake, CONFIRMED)
    bot = make_bot(fake)
    after = _Recorder()

    await bot.hot_login(storage_with_dump(), RetryLoginOption(), after)

    assert bot.state == LoginState.RUNNING
    assert after.calls == ["prepare"]
    await bot.exit()


@pytest.mark.asyncio
async def test_sync_reload_option_dumps_periodically() -> None:
    fake = FakeTransport()
    _session_routes(fake)
    bot = make_bot(fake)
    storage = storage_with_dump()

    await bot.hot_login(storage, SyncReloadDataLoginOption(interval_s=0.01))
    storage.data = None
    for _ in range(50):
        if storage.data is not None:
            break
        await asyncio.sleep(0.01)

    assert storage.data is not None
    await bot.exit()


@pytest.mark.asyncio
async def test_login_twice_is_rejected() -> None:
    fake = FakeTransport()
    _session_routes(fake)
    bot = make_bot(fake)
    await bot.hot_login(storage_with_dump())

    with pytest.raises(WebWxError):
        await bot.login()
    await bot.exit()


@pytest.mark.asyncio
async def test_confirmed_login_without_redirect_is_a_protocol_error(monkeypatch) -> None:
    fake = FakeTransport()
    fake.add(CHECK_LOGIN, text("window.code=200;"))
    bot = make_bot(fake)

    with pytest.raises(ProtocolError):
        await LoginChecker(bot, UUID, uuid_callback=False).run()

    async def confirmed_without_uri(uuid: str, tip: str = "0") -> CheckLoginResponse:
        return CheckLoginResponse(code=LoginCode.SUCCESS, raw="")

    monkeypatch.setattr(bot.caller, "check_login", confirmed_without_uri)
    with pytest.raises(ProtocolError, match="redirect_uri"):
        await LoginChecker(bot, UUID, uuid_callback=False).run()
    assert fake.calls(LOGIN_PAGE) == []
