import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from gorgon.concurrency import Deadline
from gorgon.errors import BuildCancelled, FetchError
from gorgon.fetcher import Fetcher, is_remote


class FakeResponse:
    def __init__(self, status_code, text):
        self.status_code = status_code
        self.content = text.encode("utf-8") if isinstance(text, str) else text
        self.closed = False

    def close(self):
        self.closed = True


class FakeSession:
    """Stands in for requests.Session, counting GETs per URL."""

    def __init__(self, responses, delay=0.0):
        self.responses = responses
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def get(self, url, timeout=None):
        with self._lock:
            self.calls.append((url, timeout))
        time.sleep(self.delay)
        outcome = self.responses[url]
        if isinstance(outcome, Exception):
            raise outcome
        status, text = outcome
        return FakeResponse(status, text)


def test_is_remote():
    assert is_remote("http://example.com/a.css")
    assert is_remote("https://example.com/a.css")
    assert not is_remote("data/a.txt")
    assert not is_remote("/abs/a.txt")
    assert not is_remote("ftp://example.com/a")


def test_fetch_file_relative_to_base_dir(tmp_path):
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "bio.txt").write_text("Hello from file", encoding="utf-8")
    fetcher = Fetcher(tmp_path)
    assert fetcher.fetch("data/bio.txt") == "Hello from file"


def test_fetch_file_absolute_path(tmp_path):
    target = tmp_path / "abs.txt"
    target.write_text("absolute", encoding="utf-8")
    fetcher = Fetcher(tmp_path / "elsewhere")
    assert fetcher.fetch(str(target)) == "absolute"


def test_fetch_missing_file_fails(tmp_path):
    fetcher = Fetcher(tmp_path)
    with pytest.raises(FetchError) as excinfo:
        fetcher.fetch("missing.txt")
    assert excinfo.value.source == "missing.txt"
    assert fetcher.cached("missing.txt") is None


def test_fetch_caches_file_content(monkeypatch, tmp_path):
    source = tmp_path / "cached.txt"
    source.write_text("cached content", encoding="utf-8")
    fetcher = Fetcher(tmp_path)

    calls = []
    original = fetcher._fetch_file

    def counting(path):
        calls.append(path)
        return original(path)

    monkeypatch.setattr(fetcher, "_fetch_file", counting)

    assert fetcher.fetch("cached.txt") == "cached content"
    source.unlink()
    assert fetcher.fetch("cached.txt") == "cached content"
    assert calls == ["cached.txt"]


def test_fetch_distinct_spellings_are_distinct_entries(tmp_path):
    (tmp_path / "a.txt").write_text("A", encoding="utf-8")
    session = FakeSession({})
    fetcher = Fetcher(tmp_path, session=session)
    fetcher.fetch("a.txt")
    fetcher.fetch("./a.txt")
    assert fetcher.cached("a.txt") == "A"
    assert fetcher.cached("./a.txt") == "A"


def test_fetch_http_success_and_cache():
    url = "https://example.com/reset.css"
    session = FakeSession({url: (200, "body{margin:0}")})
    fetcher = Fetcher(".", session=session)

    assert fetcher.fetch(url) == "body{margin:0}"
    assert fetcher.fetch(url) == "body{margin:0}"
    assert len(session.calls) == 1


def test_fetch_http_non_200_fails_with_status():
    url = "https://example.com/missing"
    session = FakeSession({url: (404, "not found")})
    fetcher = Fetcher(".", session=session)

    with pytest.raises(FetchError) as excinfo:
        fetcher.fetch(url)
    assert excinfo.value.status_code == 404
    assert "404" in str(excinfo.value)

    # Failures are not cached; a retry performs a new request.
    with pytest.raises(FetchError):
        fetcher.fetch(url)
    assert len(session.calls) == 2


def test_fetch_http_transport_error():
    url = "http://unreachable.invalid/"
    session = FakeSession({url: requests.ConnectionError("connection refused")})
    fetcher = Fetcher(".", session=session)
    with pytest.raises(FetchError, match="connection refused"):
        fetcher.fetch(url)


def test_fetch_http_timeout_follows_deadline():
    url = "https://example.com/data.json"
    session = FakeSession({url: (200, "{}")})
    fetcher = Fetcher(".", session=session)

    fetcher.fetch(url, Deadline(10))
    (_, timeout), = session.calls
    assert 0 < timeout <= 10


def test_fetch_respects_cancelled_deadline():
    url = "https://example.com/slow"
    session = FakeSession({url: (200, "late")})
    fetcher = Fetcher(".", session=session)
    deadline = Deadline(10)
    deadline.cancel()

    with pytest.raises(BuildCancelled):
        fetcher.fetch(url, deadline)
    assert session.calls == []


def test_fetch_single_flight_under_concurrency():
    url = "https://example.com/shared.txt"
    session = FakeSession({url: (200, "shared")}, delay=0.2)
    fetcher = Fetcher(".", session=session)
    barrier = threading.Barrier(10)
    results = []

    def worker():
        barrier.wait()
        results.append(fetcher.fetch(url))

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results == ["shared"] * 10
    assert len(session.calls) == 1


def test_resolve_fetch_map_in_parallel(tmp_path):
    (tmp_path / "local.txt").write_text("local", encoding="utf-8")
    session = FakeSession(
        {
            "https://example.com/a": (200, "A"),
            "https://example.com/b": (200, "B"),
        },
        delay=0.2,
    )
    fetcher = Fetcher(tmp_path, session=session)

    start = time.monotonic()
    result = fetcher.resolve_fetch_map(
        {
            "a": "https://example.com/a",
            "b": "https://example.com/b",
            "local": "local.txt",
        },
        max_workers=4,
    )
    elapsed = time.monotonic() - start

    assert result == {"a": "A", "b": "B", "local": "local"}
    assert elapsed < 0.4


def test_resolve_fetch_map_failure_names_key(tmp_path):
    (tmp_path / "ok.txt").write_text("ok", encoding="utf-8")
    fetcher = Fetcher(tmp_path)

    with pytest.raises(FetchError) as excinfo:
        fetcher.resolve_fetch_map({"ok": "ok.txt", "bio": "missing.txt"})
    assert excinfo.value.key == "bio"
    assert "'bio'" in str(excinfo.value)
    assert "missing.txt" in str(excinfo.value)


def test_resolve_fetch_map_empty():
    assert Fetcher(".").resolve_fetch_map({}) == {}


class Utf8TextHandler(BaseHTTPRequestHandler):
    body = "café – ünïcode".encode("utf-8")

    def do_GET(self):
        self.send_response(200)
        # No charset: requests would fall back to ISO-8859-1 for .text
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(self.body)))
        self.end_headers()
        self.wfile.write(self.body)

    def log_message(self, format, *args):
        pass


def test_fetch_http_decodes_body_as_utf8(tmp_path):
    server = ThreadingHTTPServer(("127.0.0.1", 0), Utf8TextHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        url = f"http://127.0.0.1:{server.server_address[1]}/note.txt"
        assert Fetcher(tmp_path).fetch(url, Deadline(10)) == "café – ünïcode"
    finally:
        server.shutdown()
        server.server_close()


def test_fetch_http_invalid_utf8_fails():
    url = "https://example.com/latin1.txt"
    session = FakeSession({url: (200, "café".encode("latin-1"))})
    with pytest.raises(FetchError, match="decode response body"):
        Fetcher(".", session=session).fetch(url)
