"""HTTP blob store adapter.

Talks to a plain blob API:

- ``GET    {base_url}/{namespace}/{path}`` -> 200 bytes, 404 absent
- ``PUT    {base_url}/{namespace}/{path}`` -> create or replace
- ``DELETE {base_url}/{namespace}/{path}`` -> 404 is fine
- ``GET    {base_url}/{namespace}/{prefix}`` (trailing slash) ->
  ``{"files": ["name", ...]}`` for blobs directly under *prefix*

Authentication is an optional bearer token.  Every transport problem --
connection errors, timeouts, 4xx/5xx other than the 404s above, and
unparseable listings -- is raised as ``RemoteUnavailable``.  Timeouts are
owned here, not by the orchestrator.
"""

from __future__ import annotations

import logging
import threading
from urllib.parse import quote

import requests

from ppage_sync.errors import RemoteUnavailable

from .remote import PAGES_PREFIX, RemoteStore

logger = logging.getLogger(__name__)


class HttpRemoteStore(RemoteStore):
    """Remote store over HTTP.

    Args:
        base_url: Server root, e.g. ``https://blobs.example.com/v1``.
        namespace: Application namespace (first path segment).
        token: Optional bearer token.
        timeout: ``(connect, read)`` timeout in seconds.
        verify: TLS certificate verification.
    """

    def __init__(
        self,
        base_url: str,
        namespace: str = "ppage-app",
        token: str | None = None,
        timeout: tuple[float, float] = (10, 60),
        verify: bool = True,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.namespace = namespace
        self.token = token
        self.timeout = timeout
        self.verify = verify
        self._thread_local = threading.local()

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.verify = self.verify
        if self.token:
            session.headers["Authorization"] = f"Bearer {self.token}"
        return session

    def _url(self, path: str) -> str:
        return (
            f"{self.base_url}/{quote(self.namespace, safe='')}/"
            f"{quote(path, safe='/')}"
        )

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        allow_404: bool = False,
        **kwargs,
    ) -> requests.Response | None:
        """Issue a request; ``None`` means 404 on an allow-404 call."""
        url = self._url(path)
        logger.debug("%s %s", method, url)
        try:
            response = self.session.request(
                method, url, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise RemoteUnavailable(operation, str(exc)) from exc

        if allow_404 and response.status_code == 404:
            return None
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise RemoteUnavailable(
                operation, f"HTTP {response.status_code} for {url}"
            ) from exc
        return response

    # ------------------------------------------------------------------
    # Transport primitives
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        # Listing the page prefix proves the namespace is reachable and
        # that credentials are accepted.
        self._list_blobs(PAGES_PREFIX)

    def _get_blob(self, path: str) -> bytes | None:
        response = self._request(
            "GET", path, f"get {path}", allow_404=True
        )
        return None if response is None else response.content

    def _put_blob(self, path: str, data: bytes, content_type: str) -> None:
        self._request(
            "PUT",
            path,
            f"put {path}",
            data=data,
            headers={"Content-Type": content_type},
        )

    def _delete_blob(self, path: str) -> None:
        self._request("DELETE", path, f"delete {path}", allow_404=True)

    def _list_blobs(self, prefix: str) -> list[str]:
        operation = f"list {prefix or '/'}"
        response = self._request("GET", prefix, operation, allow_404=True)
        if response is None:
            return []
        try:
            files = response.json()["files"]
        except (ValueError, KeyError, TypeError) as exc:
            raise RemoteUnavailable(
                operation, f"unexpected listing payload: {exc}"
            ) from exc
        if not isinstance(files, list):
            raise RemoteUnavailable(operation, "'files' is not a list")
        return sorted(str(name) for name in files)
