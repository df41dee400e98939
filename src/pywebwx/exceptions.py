from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import IntEnum
from typing import Any


class WebWxError(Exception):
    """Base error for the pywebwx library."""


class TransportError(WebWxError):
    """HTTP transport-level failure."""


class NetworkError(TransportError):
    """The gateway could not be reached (connection reset, DNS, timeout)."""


class ProtocolError(WebWxError):
    """A gateway response could not be parsed."""


class LoginForbiddenError(WebWxError):
    """The account is not allowed to log in through the web gateway."""


class LoginTimeoutError(WebWxError):
    """The QR code expired before the user confirmed the login."""


class SessionClosedError(WebWxError):
    """The session has ended (logout, fatal sync error or explicit exit)."""


class UserLogoutError(SessionClosedError):
    """The session ended because the user logged out."""


class NoSuchUserError(WebWxError):
    """No user with the requested user name is known to the gateway."""


class WebWxDataTicketNotFoundError(WebWxError):
    """The `webwx_data_ticket` cookie required for media calls is missing."""


class InvalidStorageError(WebWxError):
    """Reload storage is empty or does not hold a usable session dump."""


class RetCode(IntEnum):
    OK = 0
    TICKET_ERROR = -14
    LOGIC_ERROR = -2
    SYSTEM_ERROR = -1
    PARAM_ERROR = 1
    LOGIN_WARN = 1100
    LOGIN_CHECK = 1101
    COOKIE_INVALID = 1102
    LOGIN_ENV_ABNORMAL = 1203
    OPTOO_OFTEN = 1205


_RET_MESSAGES: dict[int, str] = {
    RetCode.TICKET_ERROR: "ticket error",
    RetCode.LOGIC_ERROR: "logic error",
    RetCode.SYSTEM_ERROR: "system error",
    RetCode.PARAM_ERROR: "param error",
    RetCode.LOGIN_WARN: "not login warn",
    RetCode.LOGIN_CHECK: "not login check",
    RetCode.COOKIE_INVALID: "cookie invalid error",
    RetCode.LOGIN_ENV_ABNORMAL: "login env error",
    RetCode.OPTOO_OFTEN: "operate too often",
}

_LOGIN_INVALID = frozenset({RetCode.LOGIN_WARN, RetCode.LOGIN_CHECK, RetCode.COOKIE_INVALID})


class Ret(WebWxError):
    """
    A non-zero gateway return code.

    Every JSON envelope carries `BaseResponse.Ret` and the sync-check script
    carries `retcode`; both surface as this error. Instances compare equal by
    code so callers can write `err == Ret(1102)` or `err.code == RetCode.COOKIE_INVALID`.
    """

    def __init__(self, code: int, message: str | None = None) -> None:
        self.code = int(code)
        self.message = message or _RET_MESSAGES.get(self.code) or f"ret code {self.code}"
        super().__init__(self.message)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Ret):
            return self.code == other.code
        if isinstance(other, int):
            return self.code == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.code)

    def __repr__(self) -> str:
        return f"Ret(code={self.code}, message={self.message!r})"

    @property
    def is_login_invalid(self) -> bool:
        return self.code in _LOGIN_INVALID


def _causes(err: BaseException) -> list[BaseException]:
    seen: list[BaseException] = []
    cur: BaseException | None = err
    while cur is not None and cur not in seen:
        seen.append(cur)
        cur = cur.__cause__ or cur.__context__
    return seen


def is_network_error(err: BaseException | None) -> bool:
    if err is None:
        return False
    return any(isinstance(e, NetworkError) for e in _causes(err))


def find_ret(err: BaseException | None) -> Ret | None:
    """Return the first `Ret` in the cause chain of `err`, if any."""

    if err is None:
        return None
    for e in _causes(err):
        if isinstance(e, Ret):
            return e
    return None


ErrorHandler = Callable[[BaseException], Any] | Callable[[BaseException], Awaitable[Any]]


def ignore_network_error(handler: Callable[[BaseException], Any]) -> Callable[[BaseException], Any]:
    """
    Wrap a sync-error handler so network errors are dropped.

    The wrapped handler returns `None` for network errors, which the sync engine
    treats as "keep polling".
    """

    def _wrapped(err: BaseException) -> Any:
        if is_network_error(err):
            return None
        return handler(err)

    return _wrapped
