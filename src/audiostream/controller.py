# audiostream/controller.py
from __future__ import annotations

import logging
from functools import partial
from typing import Optional

from PySide6.QtCore import QObject, Signal, Slot

from playback.engine import PlaybackEngine

from .client import FetchHandle, TransportClient
from .codec import RequestCodec
from .config import StreamConfig
from .errors import AudioStreamError, NoSongLoaded, PlaybackError, TransportError
from .models import AudioDocument, FetchRequest, StreamResponse, TrackID
from .state import NowPlaying, StreamState, StreamStatus

logger = logging.getLogger(__name__)


class StreamController(QObject):
    """
    Owns the playlist position, the current song and the stream state.

    Everything here runs on the thread the controller lives on (the GUI thread);
    fetch completions are queued back onto it by the transport. A shell only calls
    toggle()/next()/previous() and listens to the signals below.
    """

    stateChanged = Signal(object)       # StreamState
    titleChanged = Signal(str)
    artistsChanged = Signal(str)
    trackChanged = Signal(object)       # AudioDocument | None

    def __init__(
        self,
        engine: PlaybackEngine | None = None,
        transport: TransportClient | None = None,
        config: StreamConfig | None = None,
        codec: RequestCodec | None = None,
        parent=None,
    ):
        super().__init__(parent)
        self.config = config or StreamConfig()
        if not self.config.playlist:
            raise ValueError("Playlist must contain at least one track")

        self._playlist: tuple[TrackID, ...] = tuple(self.config.playlist)
        self.codec = codec or RequestCodec()
        self._owns_transport = transport is None
        self.transport = transport or TransportClient(
            timeout_s=self.config.timeout_s, user_agent=self.config.user_agent
        )
        self.engine = engine or PlaybackEngine()
        self.engine.failed.connect(self._on_engine_failed)
        self.engine.ended.connect(self._on_engine_ended)

        self._index = 0
        self._state = StreamState.idle()
        self._song: Optional[StreamResponse] = None
        self._pending: Optional[FetchHandle] = None
        self._generation = 0

        self._title = self.config.idle_title
        self._artists = self.config.artists_placeholder
        self._published_doc: Optional[AudioDocument] = None

    # ----------------------------
    # Observable projection
    # ----------------------------

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def status(self) -> StreamStatus:
        return self._state.status

    @property
    def title(self) -> str:
        return self._title

    @property
    def artists(self) -> str:
        return self._artists

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_track_id(self) -> TrackID:
        return self._playlist[self._index]

    @property
    def current_song(self) -> Optional[StreamResponse]:
        return self._song

    @property
    def playlist(self) -> tuple[TrackID, ...]:
        return self._playlist

    @property
    def is_fetching(self) -> bool:
        return self._pending is not None and self._pending.pending

    def snapshot(self) -> NowPlaying:
        return NowPlaying(state=self._state, title=self._title, artists=self._artists, index=self._index)

    def current_artists(self) -> str:
        doc = self._song.document if self._song is not None else None
        if doc is None or not doc.artists:
            return self.config.artists_placeholder
        return self.config.artist_separator.join(doc.artists)

    # ----------------------------
    # Intents
    # ----------------------------

    @Slot()
    def toggle(self) -> None:
        status = self._state.status

        if status is StreamStatus.IDLE:
            self._begin_fetch()
        elif status is StreamStatus.LOADING:
            logger.debug("toggle ignored: fetch for index %d in flight", self._index)
        elif status is StreamStatus.STREAMING:
            self.engine.pause()
            self._enter(StreamState.paused())
        elif status is StreamStatus.PAUSED:
            self._resume()
        elif status is StreamStatus.ERROR:
            self.retry()

    @Slot()
    def next(self) -> None:
        self._navigate(1)

    @Slot()
    def previous(self) -> None:
        self._navigate(-1)

    @Slot()
    def retry(self) -> None:
        if self._state.status is not StreamStatus.ERROR:
            return
        logger.info("Retrying track %s", self.current_track_id)
        self._enter(StreamState.idle())
        self._begin_fetch()

    @Slot()
    def shutdown(self) -> None:
        self._cancel_pending()
        self.engine.stop()
        self._song = None
        self._enter(StreamState.idle())
        if self._owns_transport:
            self.transport.close()

    # ----------------------------
    # Transitions
    # ----------------------------

    def _navigate(self, step: int) -> None:
        self._cancel_pending()
        self.engine.stop()
        self._index = (self._index + step) % len(self._playlist)
        self._song = None
        self._enter(StreamState.idle())
        self._begin_fetch()

    def _resume(self) -> None:
        try:
            if not self.engine.has_session:
                if self._song is None:
                    raise NoSongLoaded()
                self.engine.load(self._song.audio_buffer, self._song.file_type)
            if not self.engine.play():
                raise PlaybackError("Unable to start playback")
        except AudioStreamError as e:
            self._fail(str(e))
            return
        self._enter(StreamState.streaming())

    def _begin_fetch(self) -> None:
        self._cancel_pending()
        self._generation += 1
        token = self._generation
        index = self._index
        track_id = self._playlist[index]

        self._enter(StreamState.loading())

        try:
            payload = self.codec.encode(FetchRequest(track_id))
        except AudioStreamError as e:
            self._fail(str(e))
            return

        logger.info("Requesting track %s (index %d)", track_id, index)
        try:
            handle = self.transport.fetch(
                self.config.server_url,
                payload,
                on_success=partial(self._on_fetch_success, token, index),
                on_error=partial(self._on_fetch_error, token, index),
            )
        except TransportError as e:
            self._fail(str(e))
            return

        # a transport may complete before fetch() returns
        if self._is_current(token, index):
            self._pending = handle

    def _is_current(self, token: int, index: int) -> bool:
        return (
            token == self._generation
            and index == self._index
            and self._state.status is StreamStatus.LOADING
        )

    def _on_fetch_success(self, token: int, index: int, payload: bytes) -> None:
        if not self._is_current(token, index):
            logger.debug("Discarding stale response for index %d", index)
            return
        self._pending = None

        try:
            response = self.codec.decode(payload)
            self.engine.load(response.audio_buffer, response.file_type)
            if not self.engine.play():
                raise PlaybackError("Unable to start playback")
        except AudioStreamError as e:
            self._fail(str(e))
            return

        self._song = response
        logger.info("Audio stream => %s", response.document.details())
        self._enter(StreamState.streaming())

    def _on_fetch_error(self, token: int, index: int, error: Exception) -> None:
        if not self._is_current(token, index):
            logger.debug("Discarding stale error for index %d: %s", index, error)
            return
        self._pending = None
        self._fail(str(error))

    def _fail(self, reason: str) -> None:
        logger.warning("Audio stream error => %s", reason)
        self._cancel_pending()
        self.engine.stop()
        self._song = None
        self._enter(StreamState.error(reason))

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    # ----------------------------
    # Engine events
    # ----------------------------

    def _on_engine_failed(self, message: str) -> None:
        if self._state.has_session:
            self._fail(message)

    def _on_engine_ended(self) -> None:
        if self._state.status is not StreamStatus.STREAMING:
            return
        if self.config.auto_advance:
            self.next()
        else:
            self.engine.stop()
            self._song = None
            self._enter(StreamState.idle())

    # ----------------------------
    # Publishing
    # ----------------------------

    def _enter(self, state: StreamState) -> None:
        if state != self._state:
            logger.debug("%s -> %s", self._state.status.name, state.status.name)
            self._state = state
            self.stateChanged.emit(state)
        self._publish()

    def _title_for_state(self) -> str:
        status = self._state.status
        if status is StreamStatus.ERROR:
            return self._state.reason or "Unknown error"
        if status is StreamStatus.LOADING:
            return self.config.loading_title
        if status in (StreamStatus.STREAMING, StreamStatus.PAUSED) and self._song is not None:
            return self._song.document.title
        return self.config.idle_title

    def _publish(self) -> None:
        doc = self._song.document if self._song is not None else None
        if doc != self._published_doc:
            self._published_doc = doc
            self.trackChanged.emit(doc)

        title = self._title_for_state()
        if title != self._title:
            self._title = title
            self.titleChanged.emit(title)

        artists = self.current_artists()
        if artists != self._artists:
            self._artists = artists
            self.artistsChanged.emit(artists)
