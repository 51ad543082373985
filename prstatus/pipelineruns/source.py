"""PipelineRun sources: the read-only view of the cluster the router consumes."""
from __future__ import annotations

import json
import logging
import os
import ssl
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Tuple, Union

import httpx

from prstatus.exceptions import NotFoundError, TransientSourceError
from prstatus.pipelineruns.models import EntityIdentity, WatchEvent, WatchEventType

logger = logging.getLogger(__name__)

TEKTON_API_PREFIX = "/apis/tekton.dev/v1"
LIST_PAGE_LIMIT = 500
HTTP_STATUS_NOT_FOUND = 404
HTTP_STATUS_GONE = 410

# The API server ends every watch after this many seconds; the loop re-watches.
WATCH_TIMEOUT_SECONDS = 300
# Longest silence tolerated on an open watch. Bookmarks arrive about once a minute.
WATCH_READ_TIMEOUT_SECONDS = 120.0


class EntitySource(Protocol):
    """The three operations the router needs from the cluster."""

    async def get(self, identity: EntityIdentity) -> Dict[str, Any]:
        """Fetch one object; raises NotFoundError or TransientSourceError."""
        ...

    async def list(self) -> List[Dict[str, Any]]:
        """Fetch every current object; raises TransientSourceError."""
        ...

    def watch(self) -> AsyncIterator[WatchEvent]:
        """Stream changes; raises TransientSourceError when the stream breaks."""
        ...


def _tls_context(
    ca_path: Optional[str],
    client_cert: Optional[Tuple[str, str]],
    verify: bool
) -> Union[ssl.SSLContext, bool]:
    if verify and not client_cert and not (ca_path and Path(ca_path).exists()):
        return True
    context = ssl.create_default_context(cafile=ca_path if ca_path and Path(ca_path).exists() else None)
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    if client_cert:
        context.load_cert_chain(*client_cert)
    return context


class KubernetesEntitySource:
    """Tekton PipelineRun source backed by the Kubernetes REST API.

    Only get/list/watch are used; the exporter never writes to the cluster.
    """

    def __init__(
        self,
        api_url: str,
        token_path: Optional[str] = None,
        ca_path: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        authorization: Optional[Callable[[], Optional[str]]] = None,
        client_cert: Optional[Tuple[str, str]] = None,
        verify: bool = True,
        watch_timeout: int = WATCH_TIMEOUT_SECONDS,
        watch_read_timeout: float = WATCH_READ_TIMEOUT_SECONDS
    ):
        """Initialize the source.

        Args:
            api_url: Base URL of the API server
            token_path: Bearer token file (service account token), optional
            ca_path: CA bundle used to verify the API server, optional
            timeout: Connect/read timeout per request in seconds
            client: Pre-built client, mainly for tests
            authorization: Returns the Authorization header value; used when
                there is no token file (kubeconfig credentials)
            client_cert: (certificate, key) files for client TLS auth
            verify: Verify the API server certificate
            watch_timeout: Server-side lifetime of one watch request in seconds
            watch_read_timeout: Longest wait for the next watch line in seconds
        """
        self.api_url = api_url.rstrip("/")
        self.token_path = token_path
        self.timeout = timeout
        self.watch_timeout = watch_timeout
        self.watch_read_timeout = watch_read_timeout
        self._authorization = authorization
        self._resource_version: Optional[str] = None
        if client is None:
            client = httpx.AsyncClient(
                base_url=self.api_url,
                verify=_tls_context(ca_path, client_cert, verify),
                timeout=httpx.Timeout(timeout),
            )
        self._client = client

    @classmethod
    def from_connection(
        cls,
        connection,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ) -> "KubernetesEntitySource":
        """Build a source from a resolved KubeConnection."""
        return cls(
            api_url=connection.api_url,
            token_path=connection.token_path,
            ca_path=connection.ca_path,
            timeout=timeout,
            authorization=connection.authorization,
            client_cert=connection.client_cert,
            verify=connection.verify,
            client=client,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        # Token is re-read per request; projected service account tokens rotate.
        if self.token_path and os.path.exists(self.token_path):
            token = Path(self.token_path).read_text().strip()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        elif self._authorization is not None:
            value = self._authorization()
            if value:
                headers["Authorization"] = value
        return headers

    @staticmethod
    def _decode(response: httpx.Response, operation: str) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransientSourceError(
                f"{operation} returned a body that is not JSON ({response.headers.get('content-type', 'no content type')})",
                operation=operation,
            ) from exc
        if not isinstance(payload, dict):
            raise TransientSourceError(
                f"{operation} returned {type(payload).__name__}, expected an object", operation=operation
            )
        return payload

    async def get(self, identity: EntityIdentity) -> Dict[str, Any]:
        path = f"{TEKTON_API_PREFIX}/namespaces/{identity.namespace}/pipelineruns/{identity.name}"
        try:
            response = await self._client.get(path, headers=self._headers())
        except httpx.HTTPError as exc:
            raise TransientSourceError(f"get {identity} failed: {exc}", operation="get") from exc
        if response.status_code == HTTP_STATUS_NOT_FOUND:
            raise NotFoundError(identity)
        if response.is_error:
            raise TransientSourceError(
                f"get {identity} failed: HTTP {response.status_code}", operation="get"
            )
        return self._decode(response, "get")

    async def list(self) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        params: Dict[str, Any] = {"limit": LIST_PAGE_LIMIT}
        resource_version = None
        while True:
            try:
                response = await self._client.get(
                    f"{TEKTON_API_PREFIX}/pipelineruns", params=params, headers=self._headers()
                )
            except httpx.HTTPError as exc:
                raise TransientSourceError(f"list failed: {exc}", operation="list") from exc
            if response.is_error:
                raise TransientSourceError(f"list failed: HTTP {response.status_code}", operation="list")

            payload = self._decode(response, "list")
            page = payload.get("items") or []
            metadata = payload.get("metadata") or {}
            if not isinstance(page, list) or not isinstance(metadata, dict):
                raise TransientSourceError("list returned an unexpected payload shape", operation="list")
            items.extend(page)
            resource_version = metadata.get("resourceVersion") or resource_version
            continue_token = metadata.get("continue")
            if not continue_token:
                break
            params = {"limit": LIST_PAGE_LIMIT, "continue": continue_token}

        self._resource_version = resource_version
        logger.debug(f"Listed {len(items)} PipelineRuns (resourceVersion={resource_version})")
        return items

    async def watch(self) -> AsyncIterator[WatchEvent]:
        params: Dict[str, Any] = {
            "watch": "true",
            "allowWatchBookmarks": "true",
            "timeoutSeconds": self.watch_timeout,
        }
        if self._resource_version:
            params["resourceVersion"] = self._resource_version

        try:
            async with self._client.stream(
                "GET",
                f"{TEKTON_API_PREFIX}/pipelineruns",
                params=params,
                headers=self._headers(),
                timeout=httpx.Timeout(self.timeout, read=self.watch_read_timeout),
            ) as response:
                if response.status_code == HTTP_STATUS_GONE:
                    self._resource_version = None
                    raise TransientSourceError("watch expired (HTTP 410)", operation="watch")
                if response.is_error:
                    raise TransientSourceError(
                        f"watch failed: HTTP {response.status_code}", operation="watch"
                    )
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    event = self._parse_watch_line(line)
                    yield event
        except httpx.TimeoutException as exc:
            raise TransientSourceError(
                f"watch stalled: nothing received for {self.watch_read_timeout}s", operation="watch"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransientSourceError(f"watch stream broke: {exc}", operation="watch") from exc

    def _parse_watch_line(self, line: str) -> WatchEvent:
        try:
            payload = json.loads(line)
            event_type = WatchEventType(payload["type"])
        except (ValueError, KeyError, TypeError) as exc:
            raise TransientSourceError(f"unreadable watch event: {line[:200]}", operation="watch") from exc

        obj = payload.get("object") or {}
        if not isinstance(obj, dict):
            raise TransientSourceError(f"unreadable watch event: {line[:200]}", operation="watch")
        if event_type == WatchEventType.ERROR:
            if obj.get("code") == HTTP_STATUS_GONE:
                self._resource_version = None
            raise TransientSourceError(
                f"watch error event: {obj.get('message', 'unknown')}", operation="watch"
            )

        resource_version = (obj.get("metadata") or {}).get("resourceVersion")
        if resource_version:
            self._resource_version = resource_version
        return WatchEvent(type=event_type, object=obj)

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["EntitySource", "KubernetesEntitySource"]
