"""
pywebwx: an asyncio-first client for the WeChat web gateway.

Log in by QR scan, resume a dumped session or let the phone approve a push
login, then receive messages from the long-poll sync loop and send messages,
media and contact operations on behalf of the logged-in user.
"""

from __future__ import annotations

from loguru import logger as _log

from .bot import Bot, default_sync_error_handler
from .config import BotConfig
from .constants import Mode, MsgType
from .dispatcher import MessageContext, MessageDispatcher
from .exceptions import (
    LoginForbiddenError,
    LoginTimeoutError,
    NetworkError,
    NoSuchUserError,
    Ret,
    RetCode,
    SessionClosedError,
    UserLogoutError,
    WebWxError,
    ignore_network_error,
    is_network_error,
)
from .login import LoginOption, LoginState, RetryLoginOption, SyncReloadDataLoginOption
from .message import Message, SendMessage, SentMessage
from .qr import print_qrcode_url, qrcode_url
from .storage import InMemoryHotReloadStorage, JsonFileHotReloadStorage
from .user import Friend, Group, Members, Mp, Self, User

# Applications opt in with `logger.enable("pywebwx")`.
_log.disable("pywebwx")

__all__ = [
    "Bot",
    "BotConfig",
    "Friend",
    "Group",
    "InMemoryHotReloadStorage",
    "JsonFileHotReloadStorage",
    "LoginForbiddenError",
    "LoginOption",
    "LoginState",
    "LoginTimeoutError",
    "Members",
    "Message",
    "MessageContext",
    "MessageDispatcher",
    "Mode",
    "Mp",
    "MsgType",
    "NetworkError",
    "NoSuchUserError",
    "Ret",
    "RetCode",
    "RetryLoginOption",
    "Self",
    "SendMessage",
    "SentMessage",
    "SessionClosedError",
    "SyncReloadDataLoginOption",
    "User",
    "UserLogoutError",
    "WebWxError",
    "default_sync_error_handler",
    "ignore_network_error",
    "is_network_error",
    "print_qrcode_url",
    "qrcode_url",
]

__version__ = "0.1.0"
