"""Content fetching for Gorgon.

Fetch directives in ``site.yaml`` map a data key to a source: either a local
file path or an ``http://``/``https://`` URL. The Fetcher resolves sources to
text, caches every success for the lifetime of one build, and makes sure a
source requested by several workers at once is only read once.

Key components:
- Fetcher: Cached, single-flight source resolution.
- is_remote: Classify a source as URL or file path.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import requests

from .concurrency import Deadline, SingleFlight, TaskGroup
from .errors import FetchError

logger = logging.getLogger(__name__)

REMOTE_PREFIXES = ("http://", "https://")


def is_remote(source: str) -> bool:
    """Check whether a source is an HTTP(S) URL.

    Args:
        source: Source identifier from a fetch directive.

    Returns:
        True for ``http://`` and ``https://`` URLs.
    """
    return source.startswith(REMOTE_PREFIXES)


class Fetcher:
    """Resolve sources to text with caching and request de-duplication.

    The cache is keyed by the source string exactly as written; two spellings
    of the same file are two entries. Failures are never cached.

    Attributes:
        base_dir: Directory that relative file sources are resolved against.
        session: requests session used for HTTP sources.
    """

    def __init__(self, base_dir: Path, session: requests.Session | None = None):
        """Initialize the fetcher.

        Args:
            base_dir: Directory for relative file sources (usually the
                directory holding ``site.yaml``).
            session: Optional requests session; a new one is created if omitted.
        """
        self.base_dir = Path(base_dir)
        self.session = session or requests.Session()
        self._lock = threading.Lock()
        self._cache: dict[str, str] = {}
        self._flight = SingleFlight()

    def cached(self, source: str) -> str | None:
        """Return the cached content for a source without fetching."""
        with self._lock:
            return self._cache.get(source)

    def fetch(self, source: str, deadline: Deadline | None = None) -> str:
        """Resolve a source to its text content.

        Args:
            source: File path or HTTP(S) URL.
            deadline: Optional deadline bounding the request.

        Returns:
            The content as text.

        Raises:
            FetchError: If the file cannot be read or the response is not 200.
            BuildCancelled: If the deadline was cancelled or has expired.
        """
        with self._lock:
            if source in self._cache:
                return self._cache[source]

        return self._flight.do(source, lambda: self._resolve(source, deadline))

    def _resolve(self, source: str, deadline: Deadline | None) -> str:
        # A concurrent leader may have finished between the cache check and
        # joining the flight.
        with self._lock:
            if source in self._cache:
                return self._cache[source]

        if deadline is not None:
            deadline.check()

        if is_remote(source):
            content = self._fetch_http(source, deadline)
        else:
            content = self._fetch_file(source)

        with self._lock:
            self._cache[source] = content
        return content

    def _fetch_http(self, url: str, deadline: Deadline | None) -> str:
        timeout = None
        if deadline is not None and deadline.remaining() is not None:
            # requests rejects a zero timeout
            timeout = max(deadline.remaining(), 0.001)
        logger.debug("GET %s", url)
        try:
            response = self.session.get(url, timeout=timeout)
        except requests.RequestException as exc:
            raise FetchError(url, str(exc)) from exc

        try:
            if response.status_code != 200:
                raise FetchError(
                    url,
                    f"unexpected HTTP status: {response.status_code}",
                    status_code=response.status_code,
                )
            # Bodies are decoded as UTF-8 whatever charset the headers name.
            return response.content.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FetchError(url, f"decode response body: {exc}") from exc
        finally:
            response.close()

    def _fetch_file(self, source: str) -> str:
        path = Path(source)
        if not path.is_absolute():
            path = self.base_dir / path
        logger.debug("read %s", path)
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise FetchError(source, f"read file {path}: {exc}") from exc

    def resolve_fetch_map(
        self,
        fetch_map: dict[str, str],
        deadline: Deadline | None = None,
        max_workers: int | None = None,
    ) -> dict[str, str]:
        """Resolve every entry of a fetch map in parallel.

        Args:
            fetch_map: Mapping of data key to source.
            deadline: Optional deadline bounding every request.
            max_workers: Optional limit on concurrent requests.

        Returns:
            Mapping of data key to content.

        Raises:
            FetchError: Naming the first key whose source failed. No partial
                result is returned.
        """
        items = list(fetch_map.items())
        group = TaskGroup(deadline, max_workers=max_workers)

        def job(key: str, source: str):
            def run(task_deadline: Deadline) -> str:
                try:
                    return self.fetch(source, task_deadline)
                except FetchError as exc:
                    raise FetchError(
                        source, exc.message, key=key, status_code=exc.status_code
                    ) from exc

            return run

        contents = group.run(job(key, source) for key, source in items)
        return {key: content for (key, _), content in zip(items, contents)}
