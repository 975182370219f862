# src/playback/engine.py
from __future__ import annotations

import io
import logging
import weakref
from enum import Enum, auto
from functools import partial
from typing import Callable, Optional

from mutagen import MutagenError
from mutagen.mp3 import MP3
from PySide6.QtCore import QBuffer, QByteArray, QIODevice, QObject, QUrl, Signal
from PySide6.QtMultimedia import QAudioOutput, QMediaPlayer

from audiostream.errors import NoSongLoaded, PlaybackError
from audiostream.models import FileType

logger = logging.getLogger(__name__)


class PlayerStatus(Enum):
    STOPPED = auto()
    PLAYING = auto()
    PAUSED = auto()


# One mutagen loader per supported format hint.
_PROBES = {
    FileType.MP3: MP3,
}


def probe_buffer(buffer: bytes, file_type: FileType) -> float:
    """
    Checks that `buffer` really holds `file_type` audio and returns its length in seconds.
    Raises PlaybackError when mutagen can't make sense of it.
    """
    loader = _PROBES.get(file_type)
    if loader is None:
        raise PlaybackError(f"Unsupported audio format: {getattr(file_type, 'value', file_type)}")
    if not buffer:
        raise PlaybackError("Empty audio buffer")

    try:
        audio = loader(io.BytesIO(buffer))
    except (MutagenError, ValueError) as e:
        raise PlaybackError(f"Unable to decode {file_type.value} audio: {e}") from e

    info = getattr(audio, "info", None)
    return float(getattr(info, "length", 0.0) or 0.0)


def _qt_media_factory():
    audio = QAudioOutput()
    media = QMediaPlayer()
    media.setAudioOutput(audio)
    return media, audio


class PlaybackSession:
    """One decoded-ready track held in memory and bound to its own media player."""

    def __init__(self, data: bytes, file_type: FileType, media, audio, length_s: float = 0.0):
        self.file_type = file_type
        self.length_s = length_s
        self.media = media
        self.audio = audio

        self._bytes = QByteArray(data)
        self.device = QBuffer()
        self.device.setData(self._bytes)
        self.device.open(QIODevice.ReadOnly)

    @property
    def size(self) -> int:
        return self._bytes.size()

    def attach(self) -> None:
        # the url only carries the format hint for the backend
        self.media.setSourceDevice(self.device, QUrl(f"stream.{self.file_type.extension}"))

    def close(self) -> None:
        media, audio, device = self.media, self.audio, self.device
        self.media = self.audio = self.device = None

        for signal in (media.playbackStateChanged, media.mediaStatusChanged, media.errorOccurred):
            try:
                signal.disconnect()
            except (RuntimeError, TypeError):
                pass

        media.stop()
        media.setSource(QUrl())
        device.close()

        media.deleteLater()
        audio.deleteLater()
        device.deleteLater()


class PlaybackEngine(QObject):
    statusChanged = Signal(object)      # PlayerStatus
    failed = Signal(str)                # decoder/backend error after load
    ended = Signal()

    def __init__(
        self,
        media_factory: Callable[[], tuple] | None = None,
        probe: Callable[[bytes, FileType], float] | None = None,
        volume: float = 0.7,
    ):
        super().__init__()
        self.status = PlayerStatus.STOPPED
        self._session: Optional[PlaybackSession] = None
        self._media_factory = media_factory or _qt_media_factory
        self._probe = probe or probe_buffer
        self._volume_0_to_1 = min(1.0, max(0.0, float(volume)))

    # ----------------------------
    # Session lifecycle
    # ----------------------------

    @property
    def session(self) -> Optional[PlaybackSession]:
        return self._session

    @property
    def has_session(self) -> bool:
        return self._session is not None

    def load(self, buffer: bytes, file_type: FileType) -> PlaybackSession:
        length_s = self._probe(buffer, file_type)

        # at most one session; the old one goes first
        self.stop()

        media, audio = self._media_factory()
        audio.setVolume(self._volume_0_to_1)

        session = PlaybackSession(buffer, file_type, media, audio, length_s=length_s)
        # slots only hold a weak ref so a discarded session can be freed
        ref = weakref.ref(session)
        media.playbackStateChanged.connect(partial(self._on_qt_state_changed, ref))
        media.mediaStatusChanged.connect(partial(self._on_qt_media_status, ref))
        media.errorOccurred.connect(partial(self._on_qt_error, ref))
        session.attach()

        self._session = session
        logger.debug("Loaded %s session (%d bytes, %.1fs)", file_type.value, session.size, length_s)
        return session

    def play(self) -> bool:
        if self._session is None:
            raise NoSongLoaded()

        media = self._session.media
        media.play()
        started = media.error() == QMediaPlayer.NoError
        if started:
            self._set_status(PlayerStatus.PLAYING)
        return started

    def pause(self) -> None:
        if self._session is None:
            return
        self._session.media.pause()
        self._set_status(PlayerStatus.PAUSED)

    def stop(self) -> None:
        if self._session is None:
            return
        session, self._session = self._session, None
        session.close()
        self._set_status(PlayerStatus.STOPPED)

    # ----------------------------
    # Qt backend handlers
    # ----------------------------

    def _is_live(self, ref) -> bool:
        session = ref()
        return session is not None and session is self._session

    def _on_qt_state_changed(self, ref, state) -> None:
        if not self._is_live(ref):
            return

        if state == QMediaPlayer.PlayingState:
            self._set_status(PlayerStatus.PLAYING)
        elif state == QMediaPlayer.PausedState:
            self._set_status(PlayerStatus.PAUSED)
        else:
            self._set_status(PlayerStatus.STOPPED)

    def _on_qt_media_status(self, ref, status) -> None:
        if not self._is_live(ref):
            return

        if status == QMediaPlayer.EndOfMedia:
            self._set_status(PlayerStatus.STOPPED)
            self.ended.emit()
        elif status == QMediaPlayer.InvalidMedia:
            self.failed.emit("Invalid media")

    def _on_qt_error(self, ref, error, message: str = "") -> None:
        if not self._is_live(ref) or error == QMediaPlayer.NoError:
            return
        logger.warning("Playback error: %s", message or error)
        self.failed.emit(message or "Playback failed")

    # ----------------------------
    # Shared helpers
    # ----------------------------

    def _set_status(self, new_status: PlayerStatus) -> None:
        if self.status != new_status:
            self.status = new_status
            self.statusChanged.emit(self.status)

    def set_volume(self, volume_0_to_1: float) -> None:
        v = min(1.0, max(0.0, float(volume_0_to_1)))
        self._volume_0_to_1 = v
        if self._session is not None:
            self._session.audio.setVolume(v)

    def volume(self) -> float:
        return self._volume_0_to_1

    # convenient getters for UI
    def position_ms(self) -> int:
        if self._session is None:
            return 0
        return int(self._session.media.position())

    def duration_ms(self) -> int:
        if self._session is None:
            return 0
        if self._session.length_s > 0:
            return int(self._session.length_s * 1000)
        return int(self._session.media.duration())
