# audiostream/config.py
from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_SERVER_URL = "http://127.0.0.1:8080/"
DEFAULT_PLAYLIST = ("00", "01", "02", "03")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return default


def _env_playlist(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    items = tuple(p.strip() for p in raw.split(",") if p.strip())
    return items or default


@dataclass(frozen=True)
class StreamConfig:
    server_url: str = DEFAULT_SERVER_URL
    playlist: tuple[str, ...] = DEFAULT_PLAYLIST
    timeout_s: float = 15.0
    user_agent: str = "audiostream-client/0.1"
    auto_advance: bool = True

    # display labels
    artist_separator: str = ", "
    artists_placeholder: str = "Artists"
    idle_title: str = "No Audio Streaming"
    loading_title: str = "Loading…"

    @classmethod
    def from_env(cls) -> "StreamConfig":
        return cls(
            server_url=os.getenv("AUDIOSTREAM_URL", DEFAULT_SERVER_URL),
            playlist=_env_playlist("AUDIOSTREAM_PLAYLIST", DEFAULT_PLAYLIST),
            timeout_s=_env_float("AUDIOSTREAM_TIMEOUT", 15.0),
            user_agent=os.getenv("AUDIOSTREAM_USER_AGENT", "audiostream-client/0.1"),
            auto_advance=_env_bool("AUDIOSTREAM_AUTO_ADVANCE", True),
        )
