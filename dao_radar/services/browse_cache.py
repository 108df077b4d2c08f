"""
Browse-mode cache for the no-wallet experience.

Featured realms and the full realm list are stored in a LocalStore as minimal
``{id, name, count}`` projections with a TTL. A hit is served without any
chain call; featured projections are rehydrated into ``DaoView`` objects
flagged ``is_minimal``.
"""
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from pydantic import ValidationError

from dao_radar.config import common_settings
from dao_radar.data_models.governance_schemas import BrowseDaoSummary, DaoView
from dao_radar.exceptions import InvalidInputError
from dao_radar.services.governance_aggregator import GovernanceAggregator
from dao_radar.services.local_store import LocalStore
from dao_radar.utils.concurrency import CancellationToken
from dao_radar.utils.logger import logger

FEATURED_CACHE_KEY = "featured_realms_cache"
ALL_REALMS_CACHE_KEY = "all_realms_cache"
DEFAULT_PAGE_SIZE = 50


def to_projection(view: DaoView) -> BrowseDaoSummary:
    return BrowseDaoSummary(id=view.realm_id, name=view.name, count=view.active_proposals)


def rehydrate(summary: BrowseDaoSummary) -> DaoView:
    return DaoView(realm_id=summary.id, name=summary.name, active_proposals=summary.count, is_minimal=True)


@dataclass(frozen=True)
class RealmPage:
    items: List[BrowseDaoSummary]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size


class BrowseCache:
    def __init__(
        self,
        aggregator: GovernanceAggregator,
        store: LocalStore,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.aggregator = aggregator
        self.store = store
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else common_settings.BROWSE_CACHE_TTL_SECONDS
        self._clock = clock

    def _read_summaries(self, key: str) -> Optional[List[BrowseDaoSummary]]:
        data = self.store.read_fresh(key, self.ttl_seconds, clock=self._clock)
        if data is None:
            return None
        try:
            return [BrowseDaoSummary(**item) for item in data]
        except (TypeError, ValidationError) as e:
            logger.warning(f"[BrowseCache] Dropping unreadable cache entry {key}: {e}")
            self.store.delete(key)
            return None

    def _write_summaries(self, key: str, summaries: List[BrowseDaoSummary]) -> None:
        self.store.write_timestamped(key, [s.model_dump() for s in summaries], clock=self._clock)

    async def get(self, token: Optional[CancellationToken] = None) -> List[DaoView]:
        """Featured realms, from the cache when fresh."""
        cached = self._read_summaries(FEATURED_CACHE_KEY)
        if cached is not None:
            logger.info(f"[BrowseCache] Cache HIT for featured realms ({len(cached)})")
            return [rehydrate(s) for s in cached]

        logger.info("[BrowseCache] Cache MISS for featured realms")
        views = await self.aggregator.get_featured_organizations(token)
        # An empty result usually means every realm failed to load
        if views:
            self._write_summaries(FEATURED_CACHE_KEY, [to_projection(v) for v in views])
        return views

    async def get_all_realms(
        self,
        search: str = "",
        page: int = 0,
        page_size: int = DEFAULT_PAGE_SIZE,
        token: Optional[CancellationToken] = None,
    ) -> RealmPage:
        """The full realm list, filtered by a case-insensitive name search and paged."""
        if page_size < 1:
            raise InvalidInputError("page_size must be at least 1")
        summaries = self._read_summaries(ALL_REALMS_CACHE_KEY)
        if summaries is None:
            logger.info("[BrowseCache] Cache MISS for all realms")
            summaries = await self.aggregator.list_all_organizations(token)
            if summaries:
                self._write_summaries(ALL_REALMS_CACHE_KEY, summaries)

        term = search.strip().lower()
        if term:
            summaries = [s for s in summaries if term in s.name.lower()]
        page = max(page, 0)
        start = page * page_size
        return RealmPage(items=summaries[start:start + page_size], total=len(summaries), page=page, page_size=page_size)

    def invalidate(self) -> None:
        self.store.delete(FEATURED_CACHE_KEY)
        self.store.delete(ALL_REALMS_CACHE_KEY)
