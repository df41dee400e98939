from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from loguru import logger as log

from .caller import Caller
from .codec import generate_device_id
from .config import BotConfig
from .constants import Mode
from .exceptions import (
    ErrorHandler,
    SessionClosedError,
    UserLogoutError,
    WebWxError,
    find_ret,
)
from .intake import IntakePipeline
from .login import (
    BotLogin,
    HotLogin,
    LoginOption,
    LoginState,
    PushLogin,
    ScanLogin,
    run_login,
)
from .message import Message
from .session import BaseRequest, Session
from .storage import HotReloadItem, HotReloadStorage
from .transport import AiohttpTransport, Transport
from .user import Self, make_contact
from .util.asyncio import cancel_suppress, ensure_task, maybe_await
from .util.events import AsyncEventEmitter, Listener


def default_sync_error_handler(err: BaseException) -> BaseException | None:
    """Stop on login-invalid return codes (1100/1101/1102); keep polling on anything else."""

    ret = find_ret(err)
    if ret is not None and ret.is_login_invalid:
        return err
    log.warning("sync error suppressed: {!r}", err)
    return None


class Bot:
    """
    One logged-in web session.

    Events (register with `on`):
    - `uuid(uuid)`: a login QR code was issued
    - `scan(CheckLoginResponse)`: the QR code was scanned
    - `login(CheckLoginResponse)`: the user confirmed the login
    - `sync_check(SyncCheckResponse)`: every sync-check answer
    - `message(Message)`: every inbound message, after normalization
    - `logout(Bot)`: the session ended

    Listener errors are logged and dropped; they never end the session.
    """

    def __init__(
        self,
        config: BotConfig | None = None,
        *,
        transport: Transport | None = None,
        intake: IntakePipeline | None = None,
    ) -> None:
        self.config = config or BotConfig()
        self.transport: Transport = transport or AiohttpTransport(
            user_agent=self.config.user_agent,
            headers=self.config.headers,
            timeout_s=self.config.request_timeout_s,
            verify_ssl=self.config.verify_ssl,
        )
        self.session = Session()
        self.caller = Caller(self.transport, self.config, self.session)
        self.events = AsyncEventEmitter()
        self.intake = intake or IntakePipeline()
        self.message_error_handler: ErrorHandler = default_sync_error_handler
        self.hot_reload_storage: HotReloadStorage | None = None
        self.self: Self | None = None

        self._state = LoginState.UNINIT
        self._stopped = asyncio.Event()
        self._err: BaseException | None = None
        self._is_hot = False
        self._sync_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()

    @classmethod
    def desktop(cls, config: BotConfig | None = None, **kwargs: Any) -> Bot:
        config = config or BotConfig()
        config.mode = Mode.DESKTOP
        return cls(config, **kwargs)

    async def __aenter__(self) -> Bot:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # State.

    @property
    def state(self) -> LoginState:
        return self._state

    def set_state(self, state: LoginState) -> None:
        if state != self._state:
            log.info("bot state {} -> {}", self._state, state)
            self._state = state

    @property
    def alive(self) -> bool:
        return self._state in (LoginState.INITIALIZING, LoginState.RUNNING)

    @property
    def uuid(self) -> str:
        return self.session.uuid

    @property
    def is_hot(self) -> bool:
        return self._is_hot

    @property
    def crash_reason(self) -> BaseException | None:
        return self._err

    def on(self, event: str, listener: Listener) -> None:
        self.events.on(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        self.events.off(event, listener)

    async def wait_for(
        self,
        event: str,
        *,
        predicate: Callable[..., bool] | None = None,
        timeout_s: float | None = None,
    ) -> Any:
        """Wait for the next `event` whose arguments satisfy `predicate`."""

        return await self.events.wait_for(event, predicate=predicate, timeout_s=timeout_s)

    def get_current_user(self) -> Self:
        if self.self is None:
            raise SessionClosedError("user not login")
        return self.self

    def add_background_task(self, task: asyncio.Task[Any]) -> None:
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # Login entry points.

    async def login(self, *options: LoginOption) -> None:
        """Scan login: issue a QR code and wait for the phone to confirm."""

        await self.login_with(ScanLogin(), *options)

    async def hot_login(
        self, storage: HotReloadStorage, *options: LoginOption, retry: bool = False
    ) -> None:
        await self.login_with(HotLogin(storage, retry=retry), *options)

    async def push_login(
        self, storage: HotReloadStorage, *options: LoginOption, retry: bool = False
    ) -> None:
        await self.login_with(PushLogin(storage, retry=retry), *options)

    async def login_with(self, strategy: BotLogin, *options: LoginOption) -> None:
        if self.alive:
            raise WebWxError("bot is already logged in")
        self._reset_for_login()
        await run_login(self, strategy, options)

    def _reset_for_login(self) -> None:
        self._stopped = asyncio.Event()
        self._err = None
        self.set_state(LoginState.UNINIT)

    async def reload(self, storage: HotReloadStorage) -> None:
        """Load a session dump into the session and the cookie jar."""

        self.set_state(LoginState.RESUMING)
        self.hot_reload_storage = storage
        item = HotReloadItem.loads(await storage.read())
        self.transport.load_cookies(item.jar)
        self.session.login_info = item.login_info
        self.session.base_request = item.base_request
        self.session.domain = item.domain
        self.session.sync_key = item.sync_key
        self.session.uuid = item.uuid
        self._is_hot = True

    async def handle_login(self, redirect_uri: str) -> None:
        """Finish a scan or push login from the confirmed redirect."""

        info = await self.caller.get_login_info(redirect_uri)
        self.session.login_info = info
        if not self.config.device_id:
            self.config.device_id = generate_device_id()
        self.session.base_request = BaseRequest(
            uin=info.wx_uin,
            sid=info.wx_sid,
            skey=info.skey,
            device_id=self.config.device_id,
        )
        await self.web_init()

    async def web_init(self) -> None:
        """Shared tail of every login: init snapshot, dump, status notify, start syncing."""

        self.set_state(LoginState.INITIALIZING)
        _, base_request = self.session.require_login()
        resp = await self.caller.web_init(base_request)
        self.session.init_response = resp

        owner = Self.from_init(resp.user, self)
        for d in resp.contact_list:
            owner.upsert(make_contact(d, owner))
        self.self = owner

        # A resumed session keeps its dumped cursor.
        if self.session.sync_key.count == 0:
            self.session.sync_key = resp.sync_key

        if self.hot_reload_storage is not None:
            await self.dump_hot_reload_storage()

        await self.caller.status_notify(owner.user_name)
        log.success("logged in as {}", owner.nick_name or owner.user_name)

        self.set_state(LoginState.RUNNING)
        self._sync_task = ensure_task(self._run_sync(), name="pywebwx.sync")

    async def logout(self) -> None:
        if not self.alive:
            raise SessionClosedError("user not login")
        await self.caller.logout()
        await self.exit_with(UserLogoutError("user logout"))

    # Sync engine.

    async def _run_sync(self) -> None:
        try:
            while self.alive:
                try:
                    await self._sync_once()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    err = await maybe_await(self.message_error_handler(e))
                    if err is not None:
                        log.error("sync loop stopped: {!r}", err)
                        await self.exit_with(err)
                        return
                    if self.config.sync_retry_delay_s > 0:
                        await asyncio.sleep(self.config.sync_retry_delay_s)
        finally:
            if self._state != LoginState.STOPPED:
                self._mark_stopped()

    async def _sync_once(self) -> None:
        resp = await self.caller.sync_check()
        await self.events.emit_isolated("sync_check", resp)
        err = resp.error()
        if err is not None:
            raise err
        if resp.normal:
            return
        await self._process_new_messages()

    async def _process_new_messages(self) -> None:
        resp = await self.caller.web_wx_sync()
        if resp.sync_key.count > 0:
            self.session.sync_key = resp.sync_key

        owner = self.self
        if owner is not None:
            owner.apply_sync(resp)

        if self.hot_reload_storage is not None:
            try:
                await self.dump_hot_reload_storage()
            except (WebWxError, OSError) as e:
                log.warning("session dump after sync failed: {}", e)

        for raw in resp.add_msg_list:
            msg = Message(raw, bot=self)
            try:
                await self.intake.process(msg, owner)
            except Exception:
                log.exception("could not normalize message {}", msg.msg_id)
                continue
            await self.events.emit_isolated("message", msg)

    # Shutdown.

    def _mark_stopped(self) -> None:
        self.set_state(LoginState.STOPPED)
        self.self = None
        self.session.reset()
        self._stopped.set()

    async def exit(self) -> None:
        await self._shutdown(None)

    async def exit_with(self, err: BaseException) -> None:
        await self._shutdown(err)

    async def _shutdown(self, err: BaseException | None) -> None:
        if self._state == LoginState.STOPPED:
            return
        if err is not None:
            self._err = err
        self._mark_stopped()
        for task in list(self._background):
            await cancel_suppress(task)
        await cancel_suppress(self._sync_task)
        await self.events.emit_isolated("logout", self)

    async def block(self) -> BaseException | None:
        """Wait until the session ends; returns the error that ended it, if any."""

        if self._state in (LoginState.UNINIT, LoginState.AWAITING_QR, LoginState.RESUMING):
            raise SessionClosedError("user not login")
        await self._stopped.wait()
        return self._err

    async def close(self) -> None:
        if self.alive:
            await self.exit()
        await self.transport.close()

    # Session dump.

    async def dump_hot_reload_storage(self) -> None:
        if self.hot_reload_storage is None:
            raise WebWxError("hot reload storage is not set")
        await self.dump_to(self.hot_reload_storage)

    async def dump_to(self, storage: HotReloadStorage) -> None:
        info, base_request = self.session.require_login()
        item = HotReloadItem(
            jar=self.transport.cookies_by_origin(),
            base_request=base_request,
            login_info=info,
            domain=self.session.domain,
            sync_key=self.session.sync_key,
            uuid=self.session.uuid,
        )
        await storage.write(item.dumps())
