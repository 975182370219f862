"""Tests for the HTTP transport and fetch handles."""

import threading
import time
from unittest import mock

import pytest
import requests
from PySide6.QtCore import QCoreApplication

from audiostream.client import FetchHandle, TransportClient
from audiostream.errors import EmptyResponseError, HTTPStatusError, InvalidURLError, TransportError

URL = "http://127.0.0.1:8080/"


def _response(status=200, content=b'{"ok":1}'):
    r = mock.Mock()
    r.status_code = status
    r.content = content
    return r


@pytest.fixture
def client():
    c = TransportClient(timeout_s=5, user_agent="test-agent/1.0")
    c.session = mock.Mock(spec=requests.Session)
    return c


class TestPost:
    def test_returns_body_on_success(self, client):
        client.session.post.return_value = _response(content=b"payload")
        assert client.post(URL, b"{}") == b"payload"
        client.session.post.assert_called_once_with(URL, data=b"{}", timeout=5.0)

    def test_sets_headers_on_session(self):
        c = TransportClient(user_agent="ua/2")
        assert c.session.headers["User-Agent"] == "ua/2"
        assert c.session.headers["Content-Type"] == "application/json"
        c.close()

    @pytest.mark.parametrize("status", [301, 400, 404, 500, 503])
    def test_non_success_status(self, client, status):
        client.session.post.return_value = _response(status=status)
        with pytest.raises(HTTPStatusError) as exc:
            client.post(URL, b"{}")
        assert exc.value.status_code == status

    def test_empty_body_is_an_error(self, client):
        client.session.post.return_value = _response(content=b"")
        with pytest.raises(EmptyResponseError):
            client.post(URL, b"{}")

    def test_empty_url(self, client):
        with pytest.raises(InvalidURLError):
            client.post("", b"{}")
        client.session.post.assert_not_called()

    @pytest.mark.parametrize(
        "exc",
        [requests.exceptions.MissingSchema("x"), requests.exceptions.InvalidURL("x"), requests.exceptions.InvalidSchema("x")],
    )
    def test_invalid_url(self, client, exc):
        client.session.post.side_effect = exc
        with pytest.raises(InvalidURLError):
            client.post("not a url", b"{}")

    def test_connection_failure(self, client):
        client.session.post.side_effect = requests.ConnectionError("refused")
        with pytest.raises(TransportError, match="Unable to reach"):
            client.post(URL, b"{}")

    def test_timeout(self, client):
        client.session.post.side_effect = requests.Timeout("slow")
        with pytest.raises(TransportError, match="timed out"):
            client.post(URL, b"{}")

    def test_real_session_rejects_schemeless_url(self):
        c = TransportClient()
        with pytest.raises(InvalidURLError):
            c.post("127.0.0.1:8080", b"{}")
        c.close()


class TestFetchHandle:
    def test_delivers_success_once(self):
        ok, err = mock.Mock(), mock.Mock()
        handle = FetchHandle(ok, err)
        handle._on_worker_completed(b"data")
        handle._on_worker_completed(b"again")
        ok.assert_called_once_with(b"data")
        err.assert_not_called()
        assert handle.done and not handle.pending

    def test_delivers_error(self):
        ok, err = mock.Mock(), mock.Mock()
        handle = FetchHandle(ok, err)
        boom = TransportError("boom")
        handle._on_worker_failed(boom)
        err.assert_called_once_with(boom)
        ok.assert_not_called()

    def test_cancel_drops_result(self):
        ok, err = mock.Mock(), mock.Mock()
        handle = FetchHandle(ok, err)
        handle.cancel()
        handle.cancel()
        handle._on_worker_completed(b"late")
        handle._on_worker_failed(TransportError("late"))
        ok.assert_not_called()
        err.assert_not_called()
        assert handle.cancelled

    def test_cancel_after_done_is_noop(self):
        handle = FetchHandle(mock.Mock(), mock.Mock())
        handle._on_worker_completed(b"x")
        handle.cancel()
        assert not handle.cancelled

    def test_releases_itself_when_thread_finishes(self):
        release = mock.Mock()
        handle = FetchHandle(mock.Mock(), mock.Mock())
        handle._release = release
        handle._on_worker_finished()
        handle._on_worker_finished()
        release.assert_called_once_with(handle)


def _pump(until, timeout_s=5.0):
    """Runs the Qt event loop until `until()` holds, so queued worker signals arrive."""
    deadline = time.monotonic() + timeout_s
    while not until() and time.monotonic() < deadline:
        QCoreApplication.processEvents()
        time.sleep(0.005)
    QCoreApplication.processEvents()


class _Recorder:
    def __init__(self):
        self.calls = []

    def ok(self, payload):
        self.calls.append(("ok", payload, threading.current_thread() is threading.main_thread()))

    def err(self, error):
        self.calls.append(("err", error, threading.current_thread() is threading.main_thread()))


@pytest.fixture
def threaded_client():
    c = TransportClient(timeout_s=5)
    worker_session = mock.Mock(spec=requests.Session)
    c.new_session = mock.Mock(return_value=worker_session)
    yield c, worker_session
    c.close()


class TestFetchThreading:
    def test_result_delivered_once_on_main_thread(self, threaded_client):
        client, session = threaded_client
        session.post.return_value = _response(content=b"body")
        rec = _Recorder()

        handle = client.fetch(URL, b"{}", rec.ok, rec.err)
        assert client.in_flight() == 1
        _pump(lambda: rec.calls and client.in_flight() == 0)

        assert rec.calls == [("ok", b"body", True)]
        assert handle.done
        assert client.in_flight() == 0

    def test_each_worker_uses_and_closes_its_own_session(self, threaded_client):
        client, session = threaded_client
        session.post.return_value = _response(content=b"body")
        client.session = mock.Mock(spec=requests.Session)
        rec = _Recorder()

        client.fetch(URL, b"{}", rec.ok, rec.err)
        _pump(lambda: client.in_flight() == 0)

        session.post.assert_called_once_with(URL, data=b"{}", timeout=5.0)
        session.close.assert_called_once()
        client.session.post.assert_not_called()

    def test_transport_error_delivered(self, threaded_client):
        client, session = threaded_client
        session.post.return_value = _response(status=500)
        rec = _Recorder()

        client.fetch(URL, b"{}", rec.ok, rec.err)
        _pump(lambda: rec.calls and client.in_flight() == 0)

        [(kind, error, on_main)] = rec.calls
        assert kind == "err" and on_main
        assert isinstance(error, HTTPStatusError)

    def test_unexpected_exception_becomes_transport_error(self, threaded_client):
        client, session = threaded_client
        session.post.side_effect = RuntimeError("socket exploded")
        rec = _Recorder()

        client.fetch(URL, b"{}", rec.ok, rec.err)
        _pump(lambda: rec.calls and client.in_flight() == 0)

        [(kind, error, _)] = rec.calls
        assert kind == "err"
        assert isinstance(error, TransportError)
        assert "socket exploded" in str(error)
        assert client.in_flight() == 0

    def test_cancelled_overlapping_fetch_delivers_nothing(self, threaded_client):
        client, session = threaded_client
        gate = threading.Event()

        def post(url, data, timeout):
            if data == b"slow":
                gate.wait(5)
                return _response(content=b"stale")
            return _response(content=b"fresh")

        session.post.side_effect = post
        slow, fast = _Recorder(), _Recorder()

        first = client.fetch(URL, b"slow", slow.ok, slow.err)
        first.cancel()
        client.fetch(URL, b"fast", fast.ok, fast.err)
        _pump(lambda: fast.calls)
        gate.set()
        _pump(lambda: client.in_flight() == 0)

        assert fast.calls == [("ok", b"fresh", True)]
        assert slow.calls == []
        assert client.in_flight() == 0


class TestClose:
    def test_close_cancels_and_waits_for_in_flight(self, client):
        handle = FetchHandle(mock.Mock(), mock.Mock())
        handle.worker = mock.Mock()
        client._in_flight.add(handle)
        client.close()
        assert handle.cancelled
        handle.worker.wait.assert_called_once()
        assert client.in_flight() == 0
        client.session.close.assert_called_once()

    def test_close_waits_for_running_worker(self):
        client = TransportClient(timeout_s=5)
        session = mock.Mock(spec=requests.Session)
        client.new_session = mock.Mock(return_value=session)
        gate = threading.Event()

        def post(url, data, timeout):
            gate.wait(5)
            return _response(content=b"late")

        session.post.side_effect = post
        ok = mock.Mock()
        handle = client.fetch(URL, b"{}", ok, mock.Mock())
        threading.Timer(0.05, gate.set).start()
        client.close()

        assert handle.worker.isFinished()
        _pump(lambda: False, timeout_s=0.05)
        ok.assert_not_called()
