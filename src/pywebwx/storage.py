from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from .domain import DEFAULT_DOMAIN, DomainGroup, domain_for_host
from .exceptions import InvalidStorageError
from .session import BaseRequest, LoginInfo, SyncKey
from .transport import CookieDump
from .util import json as blobjson


class HotReloadStorage(Protocol):
    """Keyed blob store holding one session dump."""

    async def read(self) -> bytes | None: ...

    async def write(self, data: bytes) -> None: ...


@dataclass(slots=True)
class HotReloadItem:
    """
    Everything needed to resume a session without rescanning.

    `jar` maps each origin that set cookies to the cookies it set.
    """

    jar: CookieDump
    base_request: BaseRequest
    login_info: LoginInfo
    domain: DomainGroup = DEFAULT_DOMAIN
    sync_key: SyncKey = field(default_factory=SyncKey)
    uuid: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "Jar": self.jar,
            "BaseRequest": self.base_request.to_wire(),
            "LoginInfo": self.login_info.to_dict(),
            "WechatDomain": self.domain.domain,
            "SyncKey": self.sync_key.to_wire(),
            "UUID": self.uuid,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> HotReloadItem:
        if not isinstance(d.get("BaseRequest"), dict) or not isinstance(d.get("LoginInfo"), dict):
            raise InvalidStorageError("session dump is missing BaseRequest/LoginInfo")
        jar = d.get("Jar") or {}
        if not isinstance(jar, dict):
            raise InvalidStorageError("session dump has a malformed cookie jar")
        domain = d.get("WechatDomain")
        return cls(
            jar={str(k): list(v or []) for k, v in jar.items()},
            base_request=BaseRequest.from_wire(d["BaseRequest"]),
            login_info=LoginInfo.from_dict(d["LoginInfo"]),
            domain=domain_for_host(domain) if domain else DEFAULT_DOMAIN,
            sync_key=SyncKey.from_wire(d.get("SyncKey")),
            uuid=str(d.get("UUID") or ""),
        )

    def dumps(self) -> bytes:
        return blobjson.dumps(self.to_dict(), indent=2).encode("utf-8")

    @classmethod
    def loads(cls, data: bytes | None) -> HotReloadItem:
        if not data:
            raise InvalidStorageError("reload storage is empty")
        try:
            d = blobjson.loads(data)
        except ValueError as e:
            raise InvalidStorageError(f"reload storage is not valid json: {e}") from e
        if not isinstance(d, dict):
            raise InvalidStorageError("reload storage did not contain an object")
        return cls.from_dict(d)


_FILE_LOCKS: dict[Path, asyncio.Lock] = {}


def _lock_for(path: Path) -> asyncio.Lock:
    lock = _FILE_LOCKS.get(path)
    if lock is None:
        lock = asyncio.Lock()
        _FILE_LOCKS[path] = lock
    return lock


class JsonFileHotReloadStorage:
    """Session dump kept in a single JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    async def read(self) -> bytes | None:
        async with _lock_for(self.path):
            try:
                return await asyncio.to_thread(self.path.read_bytes)
            except FileNotFoundError:
                return None

    async def write(self, data: bytes) -> None:
        async with _lock_for(self.path):
            await asyncio.to_thread(self.path.parent.mkdir, parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            await asyncio.to_thread(tmp.write_bytes, data)
            await asyncio.to_thread(tmp.replace, self.path)


class InMemoryHotReloadStorage:
    def __init__(self, data: bytes | None = None) -> None:
        self.data = data

    async def read(self) -> bytes | None:
        return self.data

    async def write(self, data: bytes) -> None:
        self.data = data
