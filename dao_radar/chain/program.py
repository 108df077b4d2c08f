"""
Governance program client.

``GovernanceProgramClient`` is the read interface the services consume.
``RpcGovernanceProgramClient`` implements it with getProgramAccounts memcmp
queries and getAccountInfo lookups through the shared ChainConnection.
"""
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, Iterable, List, Optional, Sequence, TypeVar

import base58
from solana.rpc.types import DataSliceOpts, MemcmpOpts

from dao_radar.chain.addresses import PubkeyLike, parse_pubkey
from dao_radar.chain.connection import ChainConnection
from dao_radar.chain.layouts import (
    ACCOUNT_TYPE_OFFSET,
    GOVERNANCE_OFFSET,
    GOVERNANCE_TYPES,
    PROPOSAL_TYPES,
    REALM_OFFSET,
    REALM_TYPES,
    TOKEN_OWNER_RECORD_OWNER_OFFSET,
    TOKEN_OWNER_RECORD_TYPES,
    VOTE_RECORD_TYPES,
    VOTE_RECORD_VOTER_OFFSET,
    LayoutError,
    account_type_of,
    decode_proposal,
    decode_realm,
    decode_token_owner_record,
    decode_vote_record,
)
from dao_radar.data_models.governance_schemas import Proposal, Realm, TokenOwnerRecord, VoteRecord
from dao_radar.exceptions import InvalidInputError
from dao_radar.utils.logger import logger

T = TypeVar("T")


class GovernanceProgramClient(ABC):
    """Read access to governance accounts."""

    @abstractmethod
    async def get_realm(self, realm: PubkeyLike) -> Optional[Realm]:
        ...

    @abstractmethod
    async def get_realms(self, program_id: PubkeyLike) -> List[Realm]:
        ...

    @abstractmethod
    async def get_token_owner_records_by_owner(self, program_id: PubkeyLike, owner: PubkeyLike) -> List[TokenOwnerRecord]:
        ...

    @abstractmethod
    async def get_token_owner_record(self, address: PubkeyLike) -> Optional[TokenOwnerRecord]:
        ...

    @abstractmethod
    def iter_proposal_batches(self, program_id: PubkeyLike, realm: PubkeyLike) -> AsyncIterator[List[Proposal]]:
        """Yield the realm's proposals one governance at a time."""

    @abstractmethod
    async def get_proposal(self, address: PubkeyLike) -> Optional[Proposal]:
        ...

    @abstractmethod
    async def get_vote_record(self, address: PubkeyLike) -> Optional[VoteRecord]:
        ...

    @abstractmethod
    async def get_vote_records_by_voter(self, program_id: PubkeyLike, voter: PubkeyLike) -> List[VoteRecord]:
        ...


def _type_filter(account_type: int) -> MemcmpOpts:
    return MemcmpOpts(offset=ACCOUNT_TYPE_OFFSET, bytes=base58.b58encode(bytes([account_type])).decode("ascii"))


def _pubkey_filter(offset: int, key: PubkeyLike) -> MemcmpOpts:
    return MemcmpOpts(offset=offset, bytes=str(parse_pubkey(key)))


class RpcGovernanceProgramClient(GovernanceProgramClient):
    """GovernanceProgramClient backed by JSON-RPC."""

    def __init__(self, connection: ChainConnection):
        self._connection = connection

    async def _program_accounts(
        self,
        program_id: PubkeyLike,
        filters: Sequence[MemcmpOpts],
        data_slice: Optional[DataSliceOpts] = None,
    ) -> list:
        client = self._connection.get_client()
        resp = await self._connection.call(
            client.get_program_accounts(
                parse_pubkey(program_id, "program id"),
                encoding="base64",
                data_slice=data_slice,
                filters=list(filters),
            ),
            what="getProgramAccounts",
        )
        return list(resp.value)

    async def _decode_one(self, address: PubkeyLike, field: str, decoder: Callable[[str, bytes], T]) -> Optional[T]:
        data = await self._account_data(address, field)
        if data is None:
            return None
        try:
            return decoder(str(address), data)
        except LayoutError as e:
            raise InvalidInputError(f"{address} is not a {field} account: {e}") from e

    async def _account_data(self, address: PubkeyLike, field: str) -> Optional[bytes]:
        client = self._connection.get_client()
        resp = await self._connection.call(
            client.get_account_info(parse_pubkey(address, field)),
            what="getAccountInfo",
        )
        if resp.value is None:
            return None
        return bytes(resp.value.data)

    @staticmethod
    def _decode_all(keyed_accounts: Iterable, allowed_types, decoder: Callable[[str, bytes], T]) -> List[T]:
        decoded: List[T] = []
        for keyed in keyed_accounts:
            data = bytes(keyed.account.data)
            try:
                if account_type_of(data) not in allowed_types:
                    continue
                decoded.append(decoder(str(keyed.pubkey), data))
            except LayoutError as e:
                logger.debug(f"[ProgramClient] Skipping undecodable account {keyed.pubkey}: {e}")
        return decoded

    async def get_realm(self, realm: PubkeyLike) -> Optional[Realm]:
        return await self._decode_one(realm, "realm", decode_realm)

    async def get_realms(self, program_id: PubkeyLike) -> List[Realm]:
        realms: List[Realm] = []
        for account_type in REALM_TYPES:
            accounts = await self._program_accounts(program_id, [_type_filter(account_type)])
            realms.extend(self._decode_all(accounts, REALM_TYPES, decode_realm))
        return realms

    async def get_token_owner_records_by_owner(self, program_id: PubkeyLike, owner: PubkeyLike) -> List[TokenOwnerRecord]:
        # One query for both record versions; other account kinds are dropped by type tag
        accounts = await self._program_accounts(
            program_id, [_pubkey_filter(TOKEN_OWNER_RECORD_OWNER_OFFSET, owner)]
        )
        return self._decode_all(accounts, TOKEN_OWNER_RECORD_TYPES, decode_token_owner_record)

    async def get_token_owner_record(self, address: PubkeyLike) -> Optional[TokenOwnerRecord]:
        return await self._decode_one(address, "token owner record", decode_token_owner_record)

    async def get_governance_addresses(self, program_id: PubkeyLike, realm: PubkeyLike) -> List[str]:
        addresses: List[str] = []
        for account_type in GOVERNANCE_TYPES:
            accounts = await self._program_accounts(
                program_id,
                [_type_filter(account_type), _pubkey_filter(REALM_OFFSET, realm)],
                data_slice=DataSliceOpts(offset=0, length=0),
            )
            addresses.extend(str(keyed.pubkey) for keyed in accounts)
        return addresses

    async def iter_proposal_batches(self, program_id: PubkeyLike, realm: PubkeyLike) -> AsyncIterator[List[Proposal]]:
        governances = await self.get_governance_addresses(program_id, realm)
        for governance in governances:
            accounts = await self._program_accounts(program_id, [_pubkey_filter(GOVERNANCE_OFFSET, governance)])
            yield self._decode_all(accounts, PROPOSAL_TYPES, decode_proposal)

    async def get_proposal(self, address: PubkeyLike) -> Optional[Proposal]:
        return await self._decode_one(address, "proposal", decode_proposal)

    async def get_vote_record(self, address: PubkeyLike) -> Optional[VoteRecord]:
        return await self._decode_one(address, "vote record", decode_vote_record)

    async def get_vote_records_by_voter(self, program_id: PubkeyLike, voter: PubkeyLike) -> List[VoteRecord]:
        records: List[VoteRecord] = []
        for account_type in VOTE_RECORD_TYPES:
            accounts = await self._program_accounts(
                program_id,
                [_type_filter(account_type), _pubkey_filter(VOTE_RECORD_VOTER_OFFSET, voter)],
            )
            records.extend(self._decode_all(accounts, VOTE_RECORD_TYPES, decode_vote_record))
        return records
