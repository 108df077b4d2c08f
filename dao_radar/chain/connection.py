"""
Chain access layer.

``ChainConnection`` owns the single RPC client used by every other component.
The client is built on first use and reused until ``close()``; nothing here
retries or pools. ``call`` bounds every await with the configured timeout and
translates client-library failures into the DaoRadarError taxonomy.
"""
import asyncio
from typing import Awaitable, Optional, TypeVar

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment

from dao_radar.config import common_settings
from dao_radar.exceptions import DaoRadarError, UpstreamTimeoutError, classify_exception
from dao_radar.utils.logger import logger

T = TypeVar("T")


class ChainConnection:
    """Lazily constructed, shared RPC connection handle."""

    def __init__(
        self,
        endpoint: Optional[str] = None,
        commitment: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.endpoint = endpoint or common_settings.SOLANA_RPC_URL
        self.commitment = Commitment(commitment or common_settings.RPC_COMMITMENT)
        self.timeout = timeout or common_settings.RPC_TIMEOUT_SECONDS
        self._client: Optional[AsyncClient] = None

    def get_client(self) -> AsyncClient:
        """Return the shared client, constructing it on first call."""
        if self._client is None:
            logger.info(f"[ChainConnection] Creating RPC client for {self._redacted_endpoint()}")
            self._client = AsyncClient(self.endpoint, commitment=self.commitment, timeout=self.timeout)
        return self._client

    async def call(self, awaitable: Awaitable[T], timeout: Optional[float] = None, what: str = "rpc") -> T:
        """
        Await an RPC call with a bounded wait.

        Raises:
            UpstreamTimeoutError: If the call exceeds the timeout
            DaoRadarError: Classified client or transport failure
        """
        limit = timeout or self.timeout
        try:
            return await asyncio.wait_for(awaitable, timeout=limit)
        except asyncio.TimeoutError as e:
            raise UpstreamTimeoutError(f"{what} timed out after {limit:.0f}s") from e
        except DaoRadarError:
            raise
        except Exception as e:
            error = classify_exception(e)
            logger.debug(f"[ChainConnection] {what} failed: {error.message}")
            raise error from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
            logger.info("[ChainConnection] Closed RPC client")

    @property
    def is_open(self) -> bool:
        return self._client is not None

    def _redacted_endpoint(self) -> str:
        # Provider URLs commonly carry the API key in the query string
        return self.endpoint.split("?", 1)[0]
