# audiostream/state.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional


class StreamStatus(Enum):
    IDLE = auto()
    LOADING = auto()
    STREAMING = auto()
    PAUSED = auto()
    ERROR = auto()


@dataclass(frozen=True)
class StreamState:
    status: StreamStatus = StreamStatus.IDLE
    reason: Optional[str] = None    # only set for ERROR

    @classmethod
    def idle(cls) -> "StreamState":
        return cls(StreamStatus.IDLE)

    @classmethod
    def loading(cls) -> "StreamState":
        return cls(StreamStatus.LOADING)

    @classmethod
    def streaming(cls) -> "StreamState":
        return cls(StreamStatus.STREAMING)

    @classmethod
    def paused(cls) -> "StreamState":
        return cls(StreamStatus.PAUSED)

    @classmethod
    def error(cls, reason: str) -> "StreamState":
        return cls(StreamStatus.ERROR, reason or "Unknown error")

    @property
    def has_session(self) -> bool:
        return self.status in (StreamStatus.STREAMING, StreamStatus.PAUSED)


@dataclass(frozen=True)
class NowPlaying:
    state: StreamState
    title: str
    artists: str
    index: int
