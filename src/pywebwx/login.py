from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from loguru import logger as log

from .constants import QRCODE_URL, LoginCode
from .exceptions import LoginTimeoutError, ProtocolError, WebWxError
from .storage import HotReloadStorage
from .util.asyncio import ensure_task

if TYPE_CHECKING:
    from .bot import Bot


class LoginState(StrEnum):
    UNINIT = "uninit"
    AWAITING_QR = "awaiting_qr"
    RESUMING = "resuming"
    INITIALIZING = "initializing"
    RUNNING = "running"
    STOPPED = "stopped"


class BotLogin(Protocol):
    async def login(self, bot: Bot) -> None: ...


class LoginChecker:
    """
    Long-poll the check-login endpoint until the user confirms or the QR expires.

    408 repolls forever, 201 reports the scan, 400 fails and 200 completes the
    login through `Bot.handle_login`. A push login starts with `tip="1"`; every
    later poll uses `tip="0"`.
    """

    def __init__(
        self,
        bot: Bot,
        uuid: str,
        tip: str = "0",
        *,
        uuid_callback: bool = True,
        scan_callback: bool = True,
        login_callback: bool = True,
    ) -> None:
        self.bot = bot
        self.uuid = uuid
        self.tip = tip
        self.uuid_callback = uuid_callback
        self.scan_callback = scan_callback
        self.login_callback = login_callback
        self.polls = 0

    async def run(self) -> None:
        bot = self.bot
        bot.session.uuid = self.uuid
        if self.uuid_callback:
            log.info("scan to login: {}{}", QRCODE_URL, self.uuid)
            await bot.events.emit_isolated("uuid", self.uuid)

        tip = self.tip
        while True:
            resp = await bot.caller.check_login(self.uuid, tip)
            self.polls += 1
            if tip == "1":
                tip = "0"

            if resp.code == LoginCode.SUCCESS:
                if not resp.redirect_uri:
                    raise ProtocolError("confirmed login carries no redirect_uri")
                await bot.handle_login(resp.redirect_uri)
                if self.login_callback:
                    await bot.events.emit_isolated("login", resp)
                return
            if resp.code == LoginCode.SCANNED:
                log.info("qr code scanned, waiting for confirmation")
                if self.scan_callback:
                    await bot.events.emit_isolated("scan", resp)
            elif resp.code == LoginCode.TIMEOUT:
                raise LoginTimeoutError("qr code expired")
            # 408 and anything unknown: poll again.


class ScanLogin:
    async def login(self, bot: Bot) -> None:
        # A scan always starts a fresh session, even after a failed resume.
        bot.session.reset()
        bot.set_state(LoginState.AWAITING_QR)
        uuid = await bot.caller.get_login_uuid()
        await LoginChecker(bot, uuid, "0").run()


class HotLogin:
    """Resume a dumped session; optionally fall back to a scan login when it is stale."""

    def __init__(self, storage: HotReloadStorage, *, retry: bool = False) -> None:
        self.storage = storage
        self.retry = retry

    async def login(self, bot: Bot) -> None:
        try:
            await bot.reload(self.storage)
            await bot.web_init()
        except WebWxError as e:
            if not self.retry:
                raise
            log.warning("hot login failed ({}), falling back to scan login", e)
            bot.set_state(LoginState.UNINIT)
            await ScanLogin().login(bot)


class PushLogin:
    """
    Ask the phone to approve a login for the dumped account.

    The QR and scan callbacks are skipped by default since the user never
    sees a code.
    """

    def __init__(
        self,
        storage: HotReloadStorage,
        *,
        retry: bool = False,
        uuid_callback: bool = False,
        scan_callback: bool = False,
        login_callback: bool = True,
    ) -> None:
        self.storage = storage
        self.retry = retry
        self.uuid_callback = uuid_callback
        self.scan_callback = scan_callback
        self.login_callback = login_callback

    async def login(self, bot: Bot) -> None:
        try:
            await bot.reload(self.storage)
            info, _ = bot.session.require_login()
            uuid = await bot.caller.push_login(info.wx_uin)
            await LoginChecker(
                bot,
                uuid,
                "1",
                uuid_callback=self.uuid_callback,
                scan_callback=self.scan_callback,
                login_callback=self.login_callback,
            ).run()
        except WebWxError as e:
            if not self.retry:
                raise
            log.warning("push login failed ({}), falling back to scan login", e)
            bot.set_state(LoginState.UNINIT)
            await ScanLogin().login(bot)


class LoginOption:
    """
    Hook around a login attempt.

    `prepare` runs before the attempt. On failure each option's `on_error`
    gets the error in turn and returns it, a substitute, or None to swallow it
    and stop the chain. `on_success` runs after a successful attempt.
    """

    async def prepare(self, bot: Bot) -> None:
        return None

    async def on_error(self, bot: Bot, err: BaseException) -> BaseException | None:
        return err

    async def on_success(self, bot: Bot) -> None:
        return None


class RetryLoginOption(LoginOption):
    """Fall back to a scan login when the wrapped login fails."""

    async def on_error(self, bot: Bot, err: BaseException) -> BaseException | None:
        log.warning("login failed ({}), retrying with scan login", err)
        bot.set_state(LoginState.UNINIT)
        try:
            await ScanLogin().login(bot)
        except WebWxError as e:
            return e
        return None


class SyncReloadDataLoginOption(LoginOption):
    """Periodically write the session dump while the bot is running."""

    def __init__(self, interval_s: float = 60.0) -> None:
        self.interval_s = interval_s

    async def on_success(self, bot: Bot) -> None:
        bot.add_background_task(ensure_task(self._loop(bot), name="pywebwx.reload-sync"))

    async def _loop(self, bot: Bot) -> None:
        while bot.alive:
            await asyncio.sleep(self.interval_s)
            if not bot.alive:
                return
            try:
                await bot.dump_hot_reload_storage()
            except (WebWxError, OSError) as e:
                log.warning("periodic session dump failed: {}", e)


async def run_login(bot: Bot, strategy: BotLogin, options: tuple[LoginOption, ...] = ()) -> None:
    for opt in options:
        await opt.prepare(bot)
    try:
        await strategy.login(bot)
    except WebWxError as e:
        bot.set_state(LoginState.UNINIT)
        err: BaseException = e
        for opt in options:
            handled = await opt.on_error(bot, err)
            if handled is None:
                return
            err = handled
        raise err
    for opt in options:
        await opt.on_success(bot)
