# audiostream/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

TrackID = str


class FileType(str, Enum):
    MP3 = "mp3"

    @property
    def extension(self) -> str:
        return self.value


@dataclass(frozen=True)
class FetchRequest:
    track_id: TrackID


@dataclass(frozen=True)
class AudioDocument:
    track_id: TrackID
    title: str
    file_type: FileType
    storage_id: str
    artists: tuple[str, ...] = field(default_factory=tuple)

    def details(self) -> str:
        return f"Song is {self.title} by {','.join(self.artists)}"


@dataclass(frozen=True)
class StreamResponse:
    document: AudioDocument
    audio_buffer: bytes = field(repr=False)
    audio_buffer_size: int

    @property
    def file_type(self) -> FileType:
        return self.document.file_type
