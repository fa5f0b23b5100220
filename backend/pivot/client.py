"""
Asset Pivot — HTTP client

Async client for the pivot endpoint. Encodes a QueryIdentity into the wire
query string, maps 401 to AuthorizationError (never retried) and every other
failure to PivotFetchError carrying the attempted identity.

Example:
    async with PivotApiClient("http://localhost:8000", token=token) as client:
        coordinator = PaginationCoordinator(client.fetch_page)
        state = await coordinator.load(QueryIdentity(project="demo"))
"""

from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from logging_system import LogCategory, get_logger
from pivot.errors import AuthorizationError, PivotFetchError
from pivot.pagination import QueryIdentity
from pivot.schemas import PivotPage
from pivot.sort_keys import NO_PHASE, SortDirection

logger = get_logger()

PIVOT_PATH = "/api/projects/{project}/reviews/assets/pivot"


def build_query_params(identity: QueryIdentity, root: str = "assets", view: str = "list") -> Dict[str, Any]:
    """Wire parameters for ``identity``. UI pages are 0-based, wire pages 1-based."""
    params: Dict[str, Any] = {
        "page": max(0, identity.page) + 1,
        "per_page": identity.page_size,
        "sort": identity.sort_key,
        "phase": identity.phase or NO_PHASE,
        "root": root,
        "view": view,
    }
    if identity.direction is not SortDirection.NONE:
        params["dir"] = identity.direction.sql
    params.update(identity.filters.to_query_params())
    return params


class PivotApiClient:
    """Pivot endpoint client over a pooled ``httpx.AsyncClient``.

    Pass ``client`` to reuse an existing AsyncClient (e.g. one bound to an
    ASGI app in tests); otherwise one is created on ``connect()``.
    """

    def __init__(
        self,
        base_url: str = "",
        token: Optional[str] = None,
        root: str = "assets",
        timeout_seconds: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.root = root
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_seconds),
        )
        self._owns_client = True
        logger.debug("Pivot client connected", category=LogCategory.SYSTEM, metadata={"base_url": self.base_url})

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "PivotApiClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def fetch_page(self, identity: QueryIdentity, view: str = "list") -> PivotPage:
        if self._client is None:
            await self.connect()

        url = PIVOT_PATH.format(project=identity.project)
        params = build_query_params(identity, root=self.root, view=view)
        try:
            response = await self._client.get(url, params=params, headers=self._headers())
        except httpx.HTTPError as exc:
            raise PivotFetchError(f"Transport error: {exc}", identity=identity) from exc

        if response.status_code == 401:
            raise AuthorizationError("Unauthorized", identity=identity)
        if response.status_code >= 400:
            raise PivotFetchError(
                _error_detail(response), identity=identity, status_code=response.status_code,
            )

        try:
            return PivotPage.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise PivotFetchError(
                f"Malformed pivot response: {exc}", identity=identity, status_code=response.status_code,
            ) from exc


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or "Request failed"
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return "Request failed"
