# audiostream/errors.py
from __future__ import annotations


class AudioStreamError(Exception):
    """Base class for everything the stream controller turns into an error state."""


class EncodeError(AudioStreamError):
    pass


class DecodeError(AudioStreamError):
    pass


class TransportError(AudioStreamError):
    pass


class InvalidURLError(TransportError):
    pass


class HTTPStatusError(TransportError):
    def __init__(self, status_code: int, message: str | None = None):
        self.status_code = int(status_code)
        super().__init__(message or f"Audio stream request failed with HTTP {self.status_code}")


class EmptyResponseError(TransportError):
    def __init__(self, message: str = "Unknown error occurred from audio stream request"):
        super().__init__(message)


class PlaybackError(AudioStreamError):
    pass


class NoSongLoaded(PlaybackError):
    def __init__(self, message: str = "No song loaded"):
        super().__init__(message)
