# audiostream/client.py
from __future__ import annotations

import logging
from typing import Callable, Optional

import requests
from PySide6.QtCore import QObject, QThread, Signal, Slot

from .errors import EmptyResponseError, HTTPStatusError, InvalidURLError, TransportError

logger = logging.getLogger(__name__)

SuccessCallback = Callable[[bytes], None]
ErrorCallback = Callable[[TransportError], None]


class FetchWorker(QThread):
    # payload bytes | TransportError
    completed = Signal(object)
    failed = Signal(object)

    def __init__(self, client: "TransportClient", url: str, payload: bytes):
        super().__init__()
        self.client = client
        self.url = url
        self.payload = payload

    def run(self):
        # requests.Session is not shared across threads; each fetch gets its own
        session = self.client.new_session()
        try:
            data = self.client.post(self.url, self.payload, session=session)
        except TransportError as e:
            self.failed.emit(e)
        except Exception as e:
            self.failed.emit(TransportError(f"Audio stream request failed: {e}"))
        else:
            self.completed.emit(data)
        finally:
            session.close()


class FetchHandle(QObject):
    """
    Cancellable view of one in-flight fetch.

    The handle lives on the thread that called fetch(); worker signals reach it
    through queued connections, so callbacks always run on that thread.
    Cancelling does not abort the HTTP call, it only drops the result.
    """

    def __init__(self, on_success: SuccessCallback, on_error: ErrorCallback, parent=None):
        super().__init__(parent)
        self._on_success = on_success
        self._on_error = on_error
        self.cancelled = False
        self.done = False
        self.worker: Optional[FetchWorker] = None
        self._release: Optional[Callable[["FetchHandle"], None]] = None

    def attach(self, worker: FetchWorker, release: Callable[["FetchHandle"], None] | None = None) -> None:
        self.worker = worker
        self._release = release
        worker.completed.connect(self._on_worker_completed)
        worker.failed.connect(self._on_worker_failed)
        worker.finished.connect(self._on_worker_finished)

    def cancel(self) -> None:
        if self.done or self.cancelled:
            return
        self.cancelled = True
        logger.debug("Fetch cancelled")

    @property
    def pending(self) -> bool:
        return not (self.done or self.cancelled)

    @Slot(object)
    def _on_worker_completed(self, payload) -> None:
        if not self.pending:
            return
        self.done = True
        self._on_success(payload)

    @Slot(object)
    def _on_worker_failed(self, error) -> None:
        if not self.pending:
            return
        self.done = True
        self._on_error(error)

    @Slot()
    def _on_worker_finished(self) -> None:
        if self.worker is not None:
            self.worker.wait()
        if self._release is not None:
            self._release(self)
            self._release = None


class TransportClient:
    def __init__(self, timeout_s: float = 15.0, user_agent: str = "audiostream-client/0.1"):
        self.timeout_s = float(timeout_s)
        self.user_agent = user_agent
        self.session = self.new_session()
        # keeps workers alive until their thread exits
        self._in_flight: set[FetchHandle] = set()

    def new_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update({"User-Agent": self.user_agent, "Content-Type": "application/json"})
        return session

    def post(self, url: str, payload: bytes, session: requests.Session | None = None) -> bytes:
        if not url:
            raise InvalidURLError("Invalid audio stream URL: (empty)")

        try:
            r = (session or self.session).post(url, data=payload, timeout=self.timeout_s)
        except (requests.exceptions.MissingSchema,
                requests.exceptions.InvalidSchema,
                requests.exceptions.InvalidURL) as e:
            raise InvalidURLError(f"Invalid audio stream URL: {url}") from e
        except requests.Timeout as e:
            raise TransportError(f"Audio stream request timed out after {self.timeout_s:g}s") from e
        except requests.ConnectionError as e:
            raise TransportError(f"Unable to reach audio stream server: {e}") from e
        except requests.RequestException as e:
            raise TransportError(f"Audio stream request failed: {e}") from e

        if not 200 <= r.status_code < 300:
            raise HTTPStatusError(r.status_code)

        if not r.content:
            raise EmptyResponseError()

        return r.content

    def fetch(self, url: str, payload: bytes, on_success: SuccessCallback, on_error: ErrorCallback) -> FetchHandle:
        handle = FetchHandle(on_success, on_error)
        worker = FetchWorker(self, url, payload)
        handle.attach(worker, release=self._in_flight.discard)
        self._in_flight.add(handle)
        logger.info("POST %s (%d bytes)", url, len(payload))
        worker.start()
        return handle

    def in_flight(self) -> int:
        return len(self._in_flight)

    def close(self) -> None:
        for handle in list(self._in_flight):
            handle.cancel()
            # a QThread destroyed while running aborts the process
            if handle.worker is not None:
                handle.worker.wait()
        self._in_flight.clear()
        self.session.close()
