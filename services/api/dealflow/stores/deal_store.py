"""Two-tier deal store.

A DealStore composes a fast cache tier (process memory or Redis) with an
optional durable tier (PostgreSQL). The durable tier is authoritative:
readers that never saw the cached copy (e.g. the process handling the
gateway ITN) must still find the deal there.

Write policy:
- create/update write the cache first, then the durable tier
- a durable-tier failure is logged and swallowed; the cache write stands
- conditional transitions run against the authoritative tier so that a
  status change (and anything guarded by it) happens at most once

The store is a dumb merge: it does not know which transitions are legal.
"""

from __future__ import annotations

from collections.abc import Iterable
import logging
from typing import Any, Protocol

from dealflow.domain import Deal, DealStatus, PaymentIncident
from dealflow.errors import ConflictError, NotFound, StoreUnavailable

logger = logging.getLogger("uvicorn.error")


class DealBackend(Protocol):
    """One storage tier for deal records."""

    name: str

    async def insert(self, deal: Deal) -> bool:
        """Insert a new deal. Returns False if the token already exists."""
        ...

    async def fetch(self, token: str) -> Deal | None:
        ...

    async def put(self, deal: Deal) -> None:
        """Upsert the full record."""
        ...

    async def compare_and_set(
        self,
        token: str,
        expected: frozenset[DealStatus],
        changes: dict[str, Any],
    ) -> Deal | None:
        """Apply changes only if the current status is in `expected`."""
        ...

    async def add_incident(self, incident: PaymentIncident) -> None:
        ...


class DealStore:
    """Coordinator over a cache tier and an optional durable tier."""

    def __init__(self, cache: DealBackend, durable: DealBackend | None = None) -> None:
        self.cache = cache
        self.durable = durable

    @property
    def authoritative(self) -> DealBackend:
        return self.durable or self.cache

    async def create(self, deal: Deal) -> None:
        """Store a new deal.

        Raises:
            ConflictError: If the token already exists.
        """
        if await self._safe_fetch(self.durable, deal.token) is not None:
            raise ConflictError(f"Deal {deal.token} already exists", {"token": deal.token})
        try:
            inserted = await self.cache.insert(deal)
        except StoreUnavailable as e:
            if self.durable is None:
                raise
            logger.error(f"{self.cache.name} write failed for new deal {deal.token}: {e}")
            inserted = True
        if not inserted:
            raise ConflictError(f"Deal {deal.token} already exists", {"token": deal.token})
        if self.durable is not None:
            try:
                if not await self.durable.insert(deal):
                    raise ConflictError(f"Deal {deal.token} already exists", {"token": deal.token})
            except StoreUnavailable as e:
                logger.error(f"Durable write failed for new deal {deal.token}: {e}")

    async def get(self, token: str) -> Deal:
        """Return the freshest copy of a deal.

        Raises:
            NotFound: If neither tier has the token.
        """
        cached = await self._safe_fetch(self.cache, token)
        durable = await self._safe_fetch(self.durable, token)

        if durable is not None and (cached is None or durable.version >= cached.version):
            if cached is None or cached.version != durable.version:
                await self._safe_put(self.cache, durable)
            return durable
        if cached is not None:
            return cached
        raise NotFound(f"Deal {token} not found", {"token": token})

    async def update(self, token: str, changes: dict[str, Any]) -> Deal:
        """Merge fields into a deal and write through both tiers.

        Raises:
            NotFound: If the deal does not exist.
        """
        current = await self.get(token)
        updated = current.with_changes(changes)
        if self.durable is None:
            await self.cache.put(updated)
        else:
            await self._safe_put(self.cache, updated)
            await self._safe_put(self.durable, updated)
        return updated

    async def transition(
        self,
        token: str,
        expected: Iterable[DealStatus],
        changes: dict[str, Any],
    ) -> Deal | None:
        """Atomically apply changes if the status is still one of `expected`.

        Returns:
            The updated deal, or None if the precondition no longer holds.

        Raises:
            NotFound: If the deal does not exist.
        """
        expected_set = frozenset(expected)
        # Make sure the authoritative tier knows the deal (cache-only writes
        # happen when the durable tier was briefly unavailable at create time).
        current = await self.get(token)

        updated: Deal | None
        try:
            updated = await self.authoritative.compare_and_set(token, expected_set, changes)
        except StoreUnavailable as e:
            if self.authoritative is self.cache:
                raise
            logger.error(f"Durable transition failed for deal {token}, using cache tier: {e}")
            updated = await self.cache.compare_and_set(token, expected_set, changes)
            return updated

        if updated is None and current.status in expected_set and self.durable is not None:
            # Durable tier may be missing a cache-only deal; retry there.
            if await self._safe_fetch(self.durable, token) is None:
                await self._safe_put(self.durable, current)
                updated = await self.durable.compare_and_set(token, expected_set, changes)

        if updated is not None and self.durable is not None:
            await self._safe_put(self.cache, updated)
        return updated

    async def record_incident(
        self,
        kind: str,
        message: str,
        token: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> PaymentIncident:
        """Persist a failure for operator review. Never raises."""
        incident = PaymentIncident(kind=kind, message=message, token=token, detail=detail)
        logger.error(f"Payment incident {kind} (token={token}): {message}")
        try:
            await self.authoritative.add_incident(incident)
        except Exception:
            logger.exception(f"Failed to persist payment incident {kind} for token={token}")
        return incident

    async def flush(self) -> None:
        """Drop process-local cached deals (tests)."""
        clear = getattr(self.cache, "clear", None)
        if clear is not None:
            await clear()

    async def _safe_fetch(self, backend: DealBackend | None, token: str) -> Deal | None:
        if backend is None:
            return None
        try:
            return await backend.fetch(token)
        except StoreUnavailable as e:
            logger.warning(f"{backend.name} read failed for deal {token}: {e}")
            return None

    async def _safe_put(self, backend: DealBackend | None, deal: Deal) -> None:
        if backend is None:
            return
        try:
            await backend.put(deal)
        except StoreUnavailable as e:
            logger.error(f"{backend.name} write failed for deal {deal.token}: {e}")
