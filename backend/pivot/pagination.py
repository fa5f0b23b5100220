"""
Asset Pivot — Pagination coordinator

Owns the single current QueryIdentity. Requests are deduplicated by identity,
requests for superseded identities are cancelled, and a response is applied
only if its identity is still current when it arrives. The last successful
result stays visible (flagged stale) while a newer identity is loading.
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from logging_system import LogCategory, get_logger
from pivot.errors import AuthorizationError, PivotFetchError
from pivot.filters import FilterSpec
from pivot.sort_keys import NO_PHASE, SortDirection

logger = get_logger()


@dataclass(frozen=True)
class QueryIdentity:
    """Everything that determines a page's expected result set. ``page`` is 0-based."""
    project: str
    page: int = 0
    page_size: int = 15
    sort_key: str = "group_1"
    direction: SortDirection = SortDirection.NONE
    phase: str = NO_PHASE
    filters: FilterSpec = field(default_factory=FilterSpec)


Fetcher = Callable[[QueryIdentity], Awaitable[Any]]


@dataclass
class QueryState:
    identity: Optional[QueryIdentity] = None
    data: Any = None
    data_identity: Optional[QueryIdentity] = None
    loading: bool = False
    error: Optional[Exception] = None

    @property
    def is_stale(self) -> bool:
        """Displayed data belongs to an older identity than the current one."""
        return self.data is not None and self.data_identity != self.identity

    @property
    def is_empty(self) -> bool:
        return not self.loading and self.error is None and self.data is not None and not _row_count(self.data)


def _row_count(data: Any) -> int:
    rows = getattr(data, "rows", None)
    if rows is not None:
        return len(rows)
    try:
        return len(data)
    except TypeError:
        return 1


def _consume_result(task: "asyncio.Future") -> None:
    # Errors already landed in QueryState; mark them retrieved for tasks nobody awaits
    if not task.cancelled():
        task.exception()


def _cancel_requested(task: "asyncio.Task") -> bool:
    cancelling = getattr(task, "cancelling", None)
    return bool(cancelling and cancelling())


class PaginationCoordinator:
    def __init__(self, fetch: Fetcher, cache_size: int = 32):
        self._fetch = fetch
        self._cache_size = max(0, cache_size)
        self._cache: "OrderedDict[QueryIdentity, Any]" = OrderedDict()
        self._inflight: Dict[QueryIdentity, asyncio.Task] = {}
        self.state = QueryState()

    @property
    def current(self) -> Optional[QueryIdentity]:
        return self.state.identity

    # ── Cache ───────────────────────────────────────────────

    def cached(self, identity: QueryIdentity) -> Any:
        data = self._cache.get(identity)
        if data is not None:
            self._cache.move_to_end(identity)
        return data

    def _remember(self, identity: QueryIdentity, data: Any) -> None:
        if self._cache_size == 0:
            return
        self._cache[identity] = data
        self._cache.move_to_end(identity)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

    def invalidate(self) -> None:
        self._cache.clear()

    # ── Requests ────────────────────────────────────────────

    def submit(self, identity: QueryIdentity) -> "asyncio.Task":
        """Make ``identity`` current and return the task that will load it.

        Re-submitting the current identity returns the in-flight task.
        Tasks for any other identity are cancelled.
        """
        self.state.identity = identity
        self.state.error = None

        for other, task in list(self._inflight.items()):
            if other == identity:
                continue
            # A cancelled task is not done() until the loop runs; drop it now
            del self._inflight[other]
            if not task.done():
                task.cancel()
                logger.debug(
                    "Cancelled superseded pivot request",
                    category=LogCategory.PAGINATION,
                    metadata={"project": other.project, "page": other.page},
                )

        existing = self._inflight.get(identity)
        if existing is not None and not existing.done() and not _cancel_requested(existing):
            return existing

        cached = self.cached(identity)
        if cached is not None:
            self.apply_response(identity, cached)
            done: asyncio.Future = asyncio.get_running_loop().create_future()
            done.set_result(cached)
            return done

        self.state.loading = True
        task = asyncio.ensure_future(self._run(identity))
        task.add_done_callback(_consume_result)
        self._inflight[identity] = task
        return task

    async def load(self, identity: QueryIdentity) -> QueryState:
        """Submit and wait.

        Errors for the still-current identity are re-raised (AuthorizationError
        stays distinct). Cancellation of a superseded request is not an error.
        """
        task = self.submit(identity)
        await asyncio.wait({task})
        if task.cancelled():
            return self.state
        exc = task.exception()
        if exc is not None and identity == self.state.identity:
            raise exc
        return self.state

    async def _run(self, identity: QueryIdentity) -> Any:
        try:
            data = await self._fetch(identity)
        except asyncio.CancelledError:
            raise
        except AuthorizationError as exc:
            self._fail(identity, exc)
            raise
        except PivotFetchError as exc:
            self._fail(identity, exc)
            raise
        except Exception as exc:
            wrapped = PivotFetchError(str(exc) or type(exc).__name__, identity=identity)
            self._fail(identity, wrapped)
            raise wrapped from exc
        finally:
            if self._inflight.get(identity) is asyncio.current_task():
                del self._inflight[identity]

        self._remember(identity, data)
        self.apply_response(identity, data)
        return data

    def _fail(self, identity: QueryIdentity, exc: Exception) -> None:
        if identity != self.state.identity:
            logger.debug(
                "Discarded error for stale pivot query",
                category=LogCategory.PAGINATION, metadata={"error": str(exc)},
            )
            return
        self.state.loading = False
        self.state.error = exc
        if isinstance(exc, AuthorizationError):
            logger.warning("Pivot request unauthorized", category=LogCategory.AUTH, metadata={"project": identity.project})
        else:
            logger.error("Pivot request failed", category=LogCategory.PAGINATION, error=exc)

    def apply_response(self, identity: QueryIdentity, data: Any) -> bool:
        """Apply ``data`` if ``identity`` is still current; returns whether it was applied."""
        if identity != self.state.identity:
            logger.debug(
                "Discarded stale pivot response",
                category=LogCategory.PAGINATION,
                metadata={"project": identity.project, "page": identity.page},
            )
            return False
        self.state.data = data
        self.state.data_identity = identity
        self.state.loading = False
        self.state.error = None
        return True

    async def aclose(self) -> None:
        tasks = [t for t in self._inflight.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
