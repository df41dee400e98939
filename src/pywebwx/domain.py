from __future__ import annotations

from dataclasses import dataclass

from yarl import URL


@dataclass(frozen=True, slots=True)
class DomainGroup:
    """
    Host triple used for the remainder of a session.

    The gateway shards users across a handful of domains; the host the login
    redirect points at decides which group a session talks to.
    """

    domain: str
    file_domain: str
    sync_domain: str

    @property
    def base_host(self) -> str:
        return f"https://{self.domain}"

    @property
    def file_host(self) -> str:
        return f"https://{self.file_domain}"

    @property
    def sync_host(self) -> str:
        return f"https://{self.sync_domain}"


def _group(domain: str) -> DomainGroup:
    return DomainGroup(domain=domain, file_domain=f"file.{domain}", sync_domain=f"webpush.{domain}")


KNOWN_DOMAINS: tuple[DomainGroup, ...] = (
    _group("wx.qq.com"),
    _group("wx2.qq.com"),
    _group("wx8.qq.com"),
    _group("web.wechat.com"),
    _group("web2.wechat.com"),
)

DEFAULT_DOMAIN = KNOWN_DOMAINS[1]


def domain_for_host(host: str) -> DomainGroup:
    """Pick the domain group for a host; unknown hosts get `file.`/`webpush.` siblings."""

    host = host.lower().split(":", 1)[0]
    for group in KNOWN_DOMAINS:
        if host == group.domain:
            return group
    return _group(host)


def domain_for_url(url: str) -> DomainGroup:
    return domain_for_host(URL(url).host or "")
