from __future__ import annotations

from dataclasses import dataclass, field

from .constants import DEFAULT_USER_AGENT, DESKTOP_CLIENT_VERSION, Mode


@dataclass(slots=True)
class BotConfig:
    mode: Mode = Mode.NORMAL
    user_agent: str = DEFAULT_USER_AGENT

    request_timeout_s: float = 60.0
    # The gateway parks sync checks for ~25s before answering.
    sync_check_timeout_s: float = 35.0
    # Pause after a sync error the error handler chose to swallow.
    sync_retry_delay_s: float = 1.0

    # Generated on first login when unset.
    device_id: str | None = None

    # Desktop mode only: sent verbatim on the post-scan redirect fetch.
    client_version: str = DESKTOP_CLIENT_VERSION
    extspam: str = ""

    verify_ssl: bool = True
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def is_desktop(self) -> bool:
        return self.mode == Mode.DESKTOP
