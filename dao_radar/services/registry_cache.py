"""
Registry cache.

Fetches the public realm registry (display names, images, categories),
normalises it and keeps it for a TTL. Concurrent callers share one in-flight
fetch; a failed fetch is handed to every waiter and leaves the cache empty so
the next call retries.
"""
import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from dao_radar.config import common_settings
from dao_radar.data_models.governance_schemas import RegistryEntry
from dao_radar.exceptions import (
    DaoRadarError,
    InternalError,
    UpstreamError,
    UpstreamTimeoutError,
    classify_exception,
)
from dao_radar.utils.logger import logger


def resolve_image_url(url: Optional[str], base_url: str) -> Optional[str]:
    if not url:
        return None
    if url.startswith("http"):
        return url
    if url.startswith("/"):
        return f"{base_url.rstrip('/')}{url}"
    return url


def normalize_registry(raw: Any, image_base_url: str) -> List[RegistryEntry]:
    """
    Turn the raw registry document into entries.

    Entries without a non-empty ``realmId`` are dropped; relative ``ogImage``
    paths are resolved against ``image_base_url``; ``displayName`` falls back
    to ``symbol``.
    """
    if not isinstance(raw, list):
        raise UpstreamError("Registry response is not a JSON array")

    entries: List[RegistryEntry] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        realm_id = item.get("realmId")
        if not isinstance(realm_id, str) or not realm_id:
            continue
        symbol = item.get("symbol") or ""
        try:
            entries.append(RegistryEntry(
                realm_id=realm_id,
                symbol=symbol,
                display_name=item.get("displayName") or symbol,
                og_image=resolve_image_url(item.get("ogImage"), image_base_url),
                category=item.get("category") or None,
                short_description=item.get("shortDescription") or None,
                website=item.get("website") or None,
                twitter=item.get("twitter") or None,
                discord=item.get("discord") or None,
                program_id=item.get("programId") or "",
            ))
        except ValidationError as e:
            logger.debug(f"[RegistryCache] Skipping malformed entry {realm_id}: {e}")
    return entries


class RegistryCache:
    """TTL cache over the realm registry with in-flight de-duplication."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        url: Optional[str] = None,
        ttl_seconds: Optional[float] = None,
        timeout: Optional[float] = None,
        image_base_url: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.url = url or common_settings.REGISTRY_URL
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else common_settings.REGISTRY_TTL_SECONDS
        self.timeout = timeout or common_settings.REGISTRY_TIMEOUT_SECONDS
        self.image_base_url = image_base_url or common_settings.REGISTRY_IMAGE_BASE_URL
        self._owns_client = http_client is None
        self._http = http_client if http_client is not None else httpx.AsyncClient(timeout=self.timeout)
        self._clock = clock

        self._entries: Optional[List[RegistryEntry]] = None
        self._map: Optional[Dict[str, RegistryEntry]] = None
        self._fetched_at: float = 0.0
        self._inflight: Optional[asyncio.Task] = None
        self.fetch_count = 0

    def _is_fresh(self) -> bool:
        return self._entries is not None and (self._clock() - self._fetched_at) < self.ttl_seconds

    async def get_all(self) -> List[RegistryEntry]:
        """
        Return the registry list, fetching it when absent or expired.

        Raises:
            UpstreamError / UpstreamTimeoutError: If the fetch fails
        """
        if self._is_fresh():
            return self._entries
        if self._entries is not None:
            logger.info("[RegistryCache] Cache EXPIRED")
            self._entries = None
            self._map = None

        if self._inflight is None:
            self._inflight = asyncio.create_task(self._fetch())
            self._inflight.add_done_callback(self._clear_inflight)
        # Shielded so one cancelled waiter does not cancel the fetch for the others
        return await asyncio.shield(self._inflight)

    async def get_map(self) -> Dict[str, RegistryEntry]:
        entries = await self.get_all()
        if self._map is None or self._entries is not entries:
            self._map = {entry.realm_id: entry for entry in entries}
        return self._map

    def invalidate(self) -> None:
        self._entries = None
        self._map = None
        self._fetched_at = 0.0

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Retrieve so an unawaited failure is not reported as never retrieved
            task.exception()

    async def _fetch(self) -> List[RegistryEntry]:
        self.fetch_count += 1
        logger.info(f"[RegistryCache] Cache MISS, fetching {self.url}")
        try:
            response = await asyncio.wait_for(self._http.get(self.url), timeout=self.timeout)
            response.raise_for_status()
            entries = normalize_registry(response.json(), self.image_base_url)
        except asyncio.TimeoutError as e:
            logger.error(f"[RegistryCache] Registry fetch timed out after {self.timeout:.0f}s")
            raise UpstreamTimeoutError("Registry fetch timed out") from e
        except DaoRadarError:
            raise
        except Exception as e:
            error = classify_exception(e)
            logger.error(f"[RegistryCache] Registry fetch failed: {e}")
            if isinstance(error, InternalError):
                error = UpstreamError(f"Registry fetch failed: {e}")
            raise error from e

        self._entries = entries
        self._map = None
        self._fetched_at = self._clock()
        logger.info(f"[RegistryCache] Stored {len(entries)} registry entries")
        return entries

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
