from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from http.cookies import BaseCookie, Morsel, SimpleCookie
from typing import Any, Protocol

import aiohttp
from loguru import logger as log
from yarl import URL

from .exceptions import NetworkError, ProtocolError, TransportError
from .util import json as wirejson

CookieDump = dict[str, list[dict[str, Any]]]
RequestHook = Callable[[str, str, dict[str, str]], None]


@dataclass(slots=True)
class HttpResponse:
    status: int
    url: str
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    # Cookies set by this very response (name -> value).
    cookies: dict[str, str] = field(default_factory=dict)

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        try:
            return wirejson.loads(self.text())
        except ValueError as e:
            raise ProtocolError(f"invalid json from {self.url}: {e}") from e

    def raise_for_status(self) -> None:
        # 3xx is expected on the login redirect since redirects are not followed.
        if self.status >= 400:
            raise TransportError(f"{self.url} returned http {self.status}")


class Transport(Protocol):
    """What the session engine needs from an HTTP client."""

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
    ) -> HttpResponse: ...

    def cookies_by_origin(self) -> CookieDump: ...

    def load_cookies(self, dump: Mapping[str, Iterable[Mapping[str, Any]]]) -> None: ...

    def get_cookie(self, name: str) -> str | None: ...

    async def close(self) -> None: ...


def _morsel_to_dict(m: Morsel[str]) -> dict[str, Any]:
    d: dict[str, Any] = {
        "name": m.key,
        "value": m.value,
        "domain": m["domain"] or "",
        "path": m["path"] or "/",
    }
    if m["expires"]:
        d["expires"] = str(m["expires"])
    if m["max-age"]:
        d["max_age"] = str(m["max-age"])
    if m["secure"]:
        d["secure"] = True
    if m["httponly"]:
        d["httponly"] = True
    return d


def _cookie_from_dicts(items: Iterable[Mapping[str, Any]]) -> SimpleCookie:
    jar: SimpleCookie = SimpleCookie()
    for c in items:
        name = str(c["name"])
        jar[name] = str(c.get("value") or "")
        m = jar[name]
        if c.get("domain"):
            m["domain"] = str(c["domain"])
        m["path"] = str(c.get("path") or "/")
        if c.get("expires"):
            m["expires"] = str(c["expires"])
        if c.get("max_age"):
            m["max-age"] = str(c["max_age"])
        if c.get("secure"):
            m["secure"] = True
        if c.get("httponly"):
            m["httponly"] = True
    return jar


def _domain_matches(host: str, domain: str) -> bool:
    domain = domain.lstrip(".").lower()
    host = host.lower()
    return host == domain or host.endswith("." + domain)


class RecordingCookieJar(aiohttp.CookieJar):
    """
    aiohttp cookie jar that remembers which origins set cookies.

    aiohttp does not expose cookies per origin, so every cookie update
    records its response origin; `cookies_by_origin()` then replays the
    stored morsels that domain-match each recorded origin.
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._origins: dict[str, None] = {}

    def update_cookies(self, cookies: Any, response_url: URL = URL()) -> None:
        if cookies and response_url.host:
            self._origins[str(response_url.origin())] = None
        super().update_cookies(cookies, response_url)

    def update_cookies_from_headers(self, headers: Sequence[str], response_url: URL) -> None:
        # aiohttp 3.12+ stores response cookies here without going through update_cookies.
        if headers and response_url.host:
            self._origins[str(response_url.origin())] = None
        super().update_cookies_from_headers(headers, response_url)

    @property
    def origins(self) -> list[str]:
        return list(self._origins)

    def cookies_by_origin(self) -> CookieDump:
        out: CookieDump = {}
        morsels = list(self)
        for origin in self._origins:
            host = URL(origin).host or ""
            matched = [_morsel_to_dict(m) for m in morsels if _domain_matches(host, m["domain"])]
            if matched:
                out[origin] = matched
        return out

    def load(self, dump: Mapping[str, Iterable[Mapping[str, Any]]]) -> None:
        for origin, items in dump.items():
            self.update_cookies(_cookie_from_dicts(items), URL(origin))

    def get(self, name: str) -> str | None:
        for m in self:
            if m.key == name:
                return m.value
        return None


def _response_cookies(cookies: BaseCookie[str]) -> dict[str, str]:
    return {name: m.value for name, m in cookies.items()}


class AiohttpTransport:
    """
    aiohttp-backed transport.

    - redirects are never followed (the login redirect carries cookies and an
      XML body the session engine needs to see)
    - every request carries a browser user agent plus configured headers
    - request hooks can rewrite headers right before a request is sent
    """

    def __init__(
        self,
        *,
        user_agent: str,
        headers: Mapping[str, str] | None = None,
        timeout_s: float = 60.0,
        verify_ssl: bool = True,
        hooks: Iterable[RequestHook] = (),
    ) -> None:
        self._headers = {"User-Agent": user_agent, **(headers or {})}
        self._timeout_s = timeout_s
        self._verify_ssl = verify_ssl
        self.hooks: list[RequestHook] = list(hooks)
        self._jar: RecordingCookieJar | None = None
        self._session: aiohttp.ClientSession | None = None
        self._pending_dump: dict[str, list[dict[str, Any]]] = {}

    @property
    def jar(self) -> RecordingCookieJar:
        if self._jar is None:
            self._jar = RecordingCookieJar()
            if self._pending_dump:
                self._jar.load(self._pending_dump)
                self._pending_dump = {}
        return self._jar

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                cookie_jar=self.jar,
                headers=self._headers,
                connector=aiohttp.TCPConnector(ssl=self._verify_ssl),
            )
        return self._session

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
        session = self._ensure_session()
        req_headers: dict[str, str] = dict(headers or {})
        for hook in self.hooks:
            hook(method, url, req_headers)

        body = data
        if json is not None:
            body = wirejson.dumps_wire(json).encode("utf-8")
            req_headers.setdefault("Content-Type", "application/json; charset=utf-8")

        timeout = aiohttp.ClientTimeout(total=timeout_s or self._timeout_s)
        log.debug("{} {}", method, url)
        try:
            async with session.request(
                method,
                url,
                params=dict(params) if params else None,
                data=body,
                headers=req_headers,
                allow_redirects=False,
                timeout=timeout,
            ) as resp:
                payload = await resp.read()
                return HttpResponse(
                    status=resp.status,
                    url=str(resp.url),
                    body=payload,
                    headers={k: v for k, v in resp.headers.items()},
                    cookies=_response_cookies(resp.cookies),
                )
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise NetworkError(f"{method} {url}: {e!r}") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"{method} {url}: {e!r}") from e

    def cookies_by_origin(self) -> CookieDump:
        if self._jar is None:
            return dict(self._pending_dump)
        return self._jar.cookies_by_origin()

    def load_cookies(self, dump: Mapping[str, Iterable[Mapping[str, Any]]]) -> None:
        # The jar binds to the running loop; defer until a loop-bound access.
        normalized = {origin: [dict(c) for c in items] for origin, items in dump.items()}
        if self._jar is None:
            self._pending_dump.update(normalized)
            return
        self._jar.load(normalized)

    def get_cookie(self, name: str) -> str | None:
        if self._jar is None:
            for items in self._pending_dump.values():
                for c in items:
                    if c.get("name") == name:
                        return str(c.get("value") or "")
            return None
        return self._jar.get(name)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
