"""
JSON-RPC forwarding proxy.

Keeps the upstream RPC URL (and any key in it) on the server. Requests are
limited per client IP with a token bucket, checked against a method
allowlist, then forwarded unchanged; the upstream JSON is returned as-is.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from dao_radar.config import common_settings
from dao_radar.exceptions import ForbiddenMethodError, InvalidInputError, RateLimitError, UpstreamError
from dao_radar.utils.logger import logger

ALLOWED_METHODS = frozenset({
    "getAccountInfo",
    "getMultipleAccounts",
    "getProgramAccounts",
    "getLatestBlockhash",
    "sendRawTransaction",
    "sendTransaction",
    "confirmTransaction",
    "getSignatureStatuses",
    "getTransaction",
    "getBalance",
    "getSlot",
})

STALE_BUCKET_SECONDS = 120.0
CLEANUP_INTERVAL_SECONDS = 300.0


@dataclass
class _Bucket:
    tokens: float
    last_refill: float


class TokenBucketLimiter:
    """Per-key token buckets refilled continuously up to ``capacity``."""

    def __init__(
        self,
        capacity: Optional[float] = None,
        refill_rate: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.capacity = capacity or common_settings.RPC_PROXY_BUCKET_CAPACITY
        self.refill_rate = refill_rate or common_settings.RPC_PROXY_REFILL_RATE
        self._clock = clock
        self._buckets: Dict[str, _Bucket] = {}
        self._last_cleanup = clock()

    def allow(self, key: str) -> bool:
        """Take one token for ``key``; False when its bucket is empty."""
        now = self._clock()
        if now - self._last_cleanup >= CLEANUP_INTERVAL_SECONDS:
            self.cleanup(now)

        bucket = self._buckets.get(key)
        if bucket is None:
            self._buckets[key] = _Bucket(tokens=self.capacity - 1, last_refill=now)
            return True

        elapsed = now - bucket.last_refill
        bucket.tokens = min(self.capacity, bucket.tokens + elapsed * self.refill_rate)
        bucket.last_refill = now
        if bucket.tokens < 1:
            return False
        bucket.tokens -= 1
        return True

    def retry_after(self, key: str) -> float:
        bucket = self._buckets.get(key)
        if bucket is None or bucket.tokens >= 1:
            return 0.0
        return (1 - bucket.tokens) / self.refill_rate

    def cleanup(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        stale = [key for key, b in self._buckets.items() if now - b.last_refill > STALE_BUCKET_SECONDS]
        for key in stale:
            del self._buckets[key]
        self._last_cleanup = now
        if stale:
            logger.debug(f"[RpcProxy] Dropped {len(stale)} stale rate-limit buckets")
        return len(stale)

    def __len__(self) -> int:
        return len(self._buckets)


def validate_rpc_body(body: Any) -> str:
    """
    Return the JSON-RPC method of ``body``.

    Raises:
        InvalidInputError: If the body is not a single JSON-RPC request object
        ForbiddenMethodError: If the method is not allowlisted
    """
    if not isinstance(body, dict):
        raise InvalidInputError("Invalid RPC request")
    method = body.get("method")
    if not isinstance(method, str) or not method:
        raise InvalidInputError("Invalid RPC request")
    if method not in ALLOWED_METHODS:
        raise ForbiddenMethodError(method)
    return method


class RpcProxy:
    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        upstream_url: Optional[str] = None,
        limiter: Optional[TokenBucketLimiter] = None,
        timeout: Optional[float] = None,
    ):
        self.upstream_url = upstream_url or common_settings.SOLANA_RPC_URL
        self.timeout = timeout or common_settings.RPC_TIMEOUT_SECONDS
        self.limiter = limiter if limiter is not None else TokenBucketLimiter()
        self._owns_client = http_client is None
        self._http = http_client if http_client is not None else httpx.AsyncClient(timeout=self.timeout)

    def admit(self, client_ip: str) -> None:
        """Take a token for the client or raise RateLimitError (429)."""
        client_ip = client_ip or "unknown"
        if not self.limiter.allow(client_ip):
            logger.warning(f"[RpcProxy] Rate limited {client_ip}")
            raise RateLimitError("Too many requests", retry_after=max(self.limiter.retry_after(client_ip), 0.1))

    async def relay(self, body: Any) -> Any:
        """
        Validate ``body`` and send it upstream unchanged; returns the upstream JSON.

        Raises:
            InvalidInputError: 400 for a malformed body
            ForbiddenMethodError: 403 for a method outside the allowlist
            UpstreamError: 502 when the upstream call fails
        """
        method = validate_rpc_body(body)
        try:
            response = await asyncio.wait_for(
                self._http.post(self.upstream_url, json=body, headers={"Content-Type": "application/json"}),
                timeout=self.timeout,
            )
            return response.json()
        except asyncio.TimeoutError as e:
            logger.error(f"[RpcProxy] {method} timed out after {self.timeout:.0f}s")
            raise UpstreamError("RPC request failed") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[RpcProxy] {method} failed: {e}")
            raise UpstreamError("RPC request failed") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()


def client_ip_from_headers(forwarded_for: Optional[str], fallback: Optional[str]) -> str:
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return fallback or "unknown"
