"""Process-local deal tier.

Used as the cache tier when Redis is not configured, and as both tiers in
tests. Records are stored as copies so callers never share mutable state
with the store.
"""

import asyncio
from dataclasses import replace
from typing import Any

from dealflow.domain import Deal, DealStatus, PaymentIncident


class MemoryDealBackend:
    """Dict-backed deal tier guarded by an asyncio lock."""

    name = "memory"

    def __init__(self) -> None:
        self._deals: dict[str, Deal] = {}
        self.incidents: list[PaymentIncident] = []
        self._lock = asyncio.Lock()

    async def insert(self, deal: Deal) -> bool:
        async with self._lock:
            if deal.token in self._deals:
                return False
            self._deals[deal.token] = replace(deal)
            return True

    async def fetch(self, token: str) -> Deal | None:
        deal = self._deals.get(token)
        return replace(deal) if deal else None

    async def put(self, deal: Deal) -> None:
        async with self._lock:
            self._deals[deal.token] = replace(deal)

    async def compare_and_set(
        self,
        token: str,
        expected: frozenset[DealStatus],
        changes: dict[str, Any],
    ) -> Deal | None:
        async with self._lock:
            current = self._deals.get(token)
            if current is None or current.status not in expected:
                return None
            updated = current.with_changes(changes)
            self._deals[token] = updated
            return replace(updated)

    async def add_incident(self, incident: PaymentIncident) -> None:
        self.incidents.append(incident)

    async def clear(self) -> None:
        async with self._lock:
            self._deals.clear()
