#!/usr/bin/env python3
"""
Time-bounded cache of the Lima catalogs (price list, company drug list)
"""

import time
import logging
from enum import Enum
from typing import Callable, Dict, Optional, Tuple, Any, Awaitable

logger = logging.getLogger(__name__)


class CatalogKind(str, Enum):
    PRICE_LIST = "price_list"
    COMPANY_DRUGS = "company_drugs"


class CatalogCache:
    """Keeps the last fetched snapshot of each catalog for `ttl_seconds`.

    A snapshot is an immutable tuple stored together with its fetch time in a
    single (snapshot, fetched_at) pair, so readers never observe a new list
    with an old timestamp or the other way round. Expired snapshots are
    refetched on the next `get`; fetch errors propagate and the expired
    snapshot is not served. Concurrent refreshes of the same kind are allowed.
    """

    def __init__(self, lima_client, ttl_seconds: float = 15 * 60,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._fetchers: Dict[CatalogKind, Callable[[], Awaitable[Any]]] = {
            CatalogKind.PRICE_LIST: lima_client.get_price_list,
            CatalogKind.COMPANY_DRUGS: lima_client.get_company_drugs,
        }
        self._entries: Dict[CatalogKind, Tuple[tuple, float]] = {}

        logger.info(f"CatalogCache initialized: ttl={ttl_seconds}s")

    def _is_fresh(self, fetched_at: float) -> bool:
        return self._clock() - fetched_at < self.ttl_seconds

    async def get(self, kind: CatalogKind) -> tuple:
        entry = self._entries.get(kind)
        if entry is not None and self._is_fresh(entry[1]):
            logger.debug(f"Catalog cache hit: {kind.value}")
            return entry[0]

        logger.info(f"Refreshing catalog: {kind.value}")
        items = await self._fetchers[kind]()
        snapshot = tuple(items or ())
        self._entries[kind] = (snapshot, self._clock())
        logger.info(f"Catalog {kind.value} refreshed: {len(snapshot)} items")
        return snapshot

    async def get_price_list(self) -> tuple:
        return await self.get(CatalogKind.PRICE_LIST)

    async def get_company_drugs(self) -> tuple:
        return await self.get(CatalogKind.COMPANY_DRUGS)

    def invalidate(self, kind: Optional[CatalogKind] = None) -> None:
        if kind is None:
            self._entries.clear()
        else:
            self._entries.pop(kind, None)

    def snapshot_age(self, kind: CatalogKind) -> Optional[float]:
        """Seconds since the snapshot of `kind` was fetched, None if never fetched"""
        entry = self._entries.get(kind)
        if entry is None:
            return None
        return self._clock() - entry[1]
