"""Blockhash, broadcast and confirmation through the shared ChainConnection."""
from abc import ABC, abstractmethod
from typing import Optional

from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.signature import Signature

from dao_radar.chain.connection import ChainConnection
from dao_radar.config import common_settings
from dao_radar.exceptions import UpstreamError


class TransactionFailedError(UpstreamError):
    """The network processed the transaction but it returned an error."""

    def __init__(self, message: str):
        super().__init__(message)
        self.retryable = False


class TransactionSender(ABC):
    @abstractmethod
    async def latest_blockhash(self) -> Hash:
        ...

    @abstractmethod
    async def send_raw(self, payload: bytes) -> str:
        """Broadcast a signed transaction and return its signature."""

    @abstractmethod
    async def confirm(self, signature: str) -> None:
        """Block until the signature reaches the configured commitment."""


class RpcTransactionSender(TransactionSender):
    def __init__(self, connection: ChainConnection, confirm_timeout: Optional[float] = None):
        self._connection = connection
        self._confirm_timeout = confirm_timeout or common_settings.CONFIRM_TIMEOUT_SECONDS
        self._last_valid_block_height: Optional[int] = None

    async def latest_blockhash(self) -> Hash:
        client = self._connection.get_client()
        resp = await self._connection.call(client.get_latest_blockhash(), what="getLatestBlockhash")
        self._last_valid_block_height = resp.value.last_valid_block_height
        return resp.value.blockhash

    async def send_raw(self, payload: bytes) -> str:
        client = self._connection.get_client()
        resp = await self._connection.call(
            client.send_raw_transaction(payload, opts=TxOpts(preflight_commitment=self._connection.commitment)),
            what="sendRawTransaction",
        )
        return str(resp.value)

    async def confirm(self, signature: str) -> None:
        client = self._connection.get_client()
        resp = await self._connection.call(
            client.confirm_transaction(
                Signature.from_string(signature),
                self._connection.commitment,
                last_valid_block_height=self._last_valid_block_height,
            ),
            timeout=self._confirm_timeout,
            what="confirmTransaction",
        )
        statuses = resp.value or []
        status = statuses[0] if statuses else None
        if status is not None and status.err is not None:
            raise TransactionFailedError(f"Transaction {signature} failed: {status.err}")
