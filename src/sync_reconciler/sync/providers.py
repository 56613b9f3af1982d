"""Object provider seams and the REST implementation.

Sources and targets are pluggable ``ObjectProvider`` implementations.  The
engine only calls four operations:

* ``list(synchronization, page)`` -> ``(objects, has_more)``
* ``write(ref, payload, existing_target_id)`` -> target id
* ``delete(ref, target_id)`` -- raises ``ObjectNotFoundError`` when the
  object is already gone
* ``get(ref, target_id)`` -> payload, or ``ObjectNotFoundError``

``RestObjectProvider`` talks JSON over HTTP with ``requests``.  Each worker
thread gets its own session.  HTTP failures are translated into the
engine's error taxonomy (429 -> ``RateLimitedError``, 5xx and connection
errors -> ``TransientError``, 404 -> ``ObjectNotFoundError``).

Provider settings live in ``ProviderRef.config``::

    location: https://api.example.org     # base URL
    endpoint: /items                      # collection path
    headers: {X-Api-Key: "${API_KEY}"}
    results_position: data.items          # where the list lives
    id_position: uuid                     # origin id inside an object
    page_param: page
    limit_param: limit
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol

import requests

from sync_reconciler.sync.cursor import (
    extract_next_link,
    extract_objects,
    extract_origin_id,
)
from sync_reconciler.sync.errors import (
    ObjectNotFoundError,
    RateLimitedError,
    ReconcileError,
    TransientError,
)
from sync_reconciler.sync.models import ProviderRef, Synchronization

logger = logging.getLogger(__name__)


class ObjectProvider(Protocol):
    def list(
        self, synchronization: Synchronization, page: int
    ) -> tuple[list[Any], bool]: ...

    def write(
        self, ref: ProviderRef, payload: Any, existing_target_id: str | None
    ) -> str: ...

    def delete(self, ref: ProviderRef, target_id: str) -> None: ...

    def get(self, ref: ProviderRef, target_id: str) -> Any: ...


class AuthenticationProvider(Protocol):
    """Supplies per-request credentials; opaque to the engine."""

    def headers(self, ref: ProviderRef) -> dict[str, str]: ...


class RestClient:
    """JSON-over-HTTP client with one ``requests.Session`` per thread."""

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
        verify: bool = True,
        timeout: tuple[float, float] = (10, 60),
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})
        self.auth = auth
        self.verify = verify
        self.timeout = timeout
        self._thread_local = threading.local()

    @property
    def session(self) -> requests.Session:
        """Session for the current thread."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update({"Accept": "application/json", **self.headers})
        if self.auth:
            session.auth = self.auth
        session.verify = self.verify
        return session

    def url(self, path: str = "") -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path:
            return self.base_url
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str = "",
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body (``None`` if empty)."""
        url = self.url(path)
        try:
            response = self._get_session().request(
                method,
                url,
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise TransientError(f"{method} {url} failed: {exc}") from exc

        if response.status_code == 404:
            raise ObjectNotFoundError(f"{method} {url} returned 404")
        if response.status_code == 429:
            reset = response.headers.get(
                "X-RateLimit-Reset", response.headers.get("Retry-After")
            )
            raise RateLimitedError(f"{method} {url} was rate limited", reset=reset)
        if response.status_code >= 500:
            raise TransientError(f"{method} {url} returned {response.status_code}")
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise ReconcileError(str(exc)) from exc

        if not response.content:
            return None
        return response.json()


class RestObjectProvider:
    """``ObjectProvider`` for JSON REST collections.

    Args:
        auth: Optional credential source consulted on every request.
        page_size: Default page size sent as ``limit_param``.
    """

    def __init__(
        self,
        auth: AuthenticationProvider | None = None,
        page_size: int = 100,
    ) -> None:
        self.auth = auth
        self.page_size = page_size
        self._clients: dict[str, RestClient] = {}
        self._lock = threading.Lock()

    def _client(self, ref: ProviderRef) -> RestClient:
        with self._lock:
            client = self._clients.get(ref.id)
            if client is None:
                basic = ref.config.get("auth")
                client = RestClient(
                    base_url=ref.config.get("location", ref.id),
                    headers=ref.config.get("headers"),
                    auth=tuple(basic) if basic else None,
                    verify=ref.config.get("verify", True),
                )
                self._clients[ref.id] = client
            return client

    def _headers(self, ref: ProviderRef) -> dict[str, str] | None:
        return self.auth.headers(ref) if self.auth is not None else None

    def _item_path(self, ref: ProviderRef, target_id: str) -> str:
        endpoint = ref.config.get("endpoint", "").rstrip("/")
        return f"{endpoint}/{target_id}"

    def list(
        self, synchronization: Synchronization, page: int
    ) -> tuple[list[Any], bool]:
        ref = synchronization.source
        config = ref.config
        page_size = int(config.get("page_size", self.page_size))
        params = dict(config.get("query", {}))
        params[config.get("page_param", "page")] = page
        params[config.get("limit_param", "limit")] = page_size

        body = self._client(ref).request(
            "GET",
            config.get("endpoint", ""),
            params=params,
            headers=self._headers(ref),
        )
        objects = extract_objects(body, config.get("results_position"))

        if isinstance(body, dict) and extract_next_link(body) is not None:
            has_more = True
        elif isinstance(body, dict) and isinstance(body.get("pages"), int):
            has_more = page < body["pages"]
        else:
            has_more = len(objects) >= page_size
        logger.debug(
            "Listed %d objects from %s (page %d, more=%s)",
            len(objects),
            ref.id,
            page,
            has_more,
        )
        return objects, has_more

    def write(
        self, ref: ProviderRef, payload: Any, existing_target_id: str | None
    ) -> str:
        client = self._client(ref)
        headers = self._headers(ref)
        if existing_target_id is None:
            body = client.request(
                "POST",
                ref.config.get("endpoint", ""),
                json=payload,
                headers=headers,
            )
        else:
            body = client.request(
                "PUT",
                self._item_path(ref, existing_target_id),
                json=payload,
                headers=headers,
            )

        target_id = extract_origin_id(body, ref.config.get("id_position"))
        if target_id is None:
            target_id = existing_target_id
        if target_id is None:
            raise ReconcileError(
                f"Target {ref.id} did not return an id for the created object"
            )
        return target_id

    def delete(self, ref: ProviderRef, target_id: str) -> None:
        self._client(ref).request(
            "DELETE", self._item_path(ref, target_id), headers=self._headers(ref)
        )

    def get(self, ref: ProviderRef, target_id: str) -> Any:
        return self._client(ref).request(
            "GET", self._item_path(ref, target_id), headers=self._headers(ref)
        )


def create_provider(
    provider_type: str,
    auth: AuthenticationProvider | None = None,
    page_size: int = 100,
) -> ObjectProvider:
    """Build an object provider for *provider_type*.

    Raises:
        ValueError: If the type is unknown.
    """
    if provider_type == "rest":
        return RestObjectProvider(auth=auth, page_size=page_size)
    raise ValueError(f"Unknown provider type: {provider_type}")
