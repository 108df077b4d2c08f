"""Broadcast and confirmation through a mocked AsyncClient."""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.hash import Hash
from solders.signature import Signature

from ..connection import ChainConnection
from ..transactions import RpcTransactionSender, TransactionFailedError


@pytest.fixture
def rpc():
    client = MagicMock()
    client.get_latest_blockhash = AsyncMock(
        return_value=SimpleNamespace(value=SimpleNamespace(blockhash=Hash.default(), last_valid_block_height=1234))
    )
    client.send_raw_transaction = AsyncMock(return_value=SimpleNamespace(value=Signature.default()))
    client.confirm_transaction = AsyncMock(return_value=SimpleNamespace(value=[SimpleNamespace(err=None)]))
    return client


@pytest.fixture
def sender(rpc):
    connection = ChainConnection(endpoint="https://rpc.example")
    connection.get_client = MagicMock(return_value=rpc)
    return RpcTransactionSender(connection, confirm_timeout=1.0)


class TestRpcTransactionSender:
    @pytest.mark.asyncio
    async def test_confirm_uses_blockhash_expiry(self, sender, rpc):
        assert await sender.latest_blockhash() == Hash.default()
        signature = await sender.send_raw(b"\x01signed")
        assert signature == str(Signature.default())

        await sender.confirm(signature)

        kwargs = rpc.confirm_transaction.call_args.kwargs
        assert kwargs["last_valid_block_height"] == 1234

    @pytest.mark.asyncio
    async def test_on_chain_error(self, sender, rpc):
        rpc.confirm_transaction.return_value = SimpleNamespace(
            value=[SimpleNamespace(err="InstructionError(0, Custom(512))")]
        )
        with pytest.raises(TransactionFailedError) as exc_info:
            await sender.confirm(str(Signature.default()))
        assert not exc_info.value.retryable
