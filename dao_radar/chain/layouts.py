"""
Read-side decoders for SPL governance accounts.

Only the account kinds and fields this service consumes are decoded. All
accounts are Borsh-serialised and start with a one-byte account type tag.
"""
import struct
from typing import Callable, List, Optional, TypeVar

import base58

from dao_radar.data_models.governance_schemas import (
    Proposal,
    ProposalOption,
    ProposalState,
    Realm,
    RealmConfig,
    TokenOwnerRecord,
    VoteKind,
    VoteRecord,
)
from dao_radar.utils.numeric import TokenAmount

T = TypeVar("T")

# Governance account type tags
REALM_V1 = 1
TOKEN_OWNER_RECORD_V1 = 2
ACCOUNT_GOVERNANCE_V1 = 3
PROGRAM_GOVERNANCE_V1 = 4
PROPOSAL_V1 = 5
VOTE_RECORD_V1 = 7
MINT_GOVERNANCE_V1 = 9
TOKEN_GOVERNANCE_V1 = 10
VOTE_RECORD_V2 = 12
PROPOSAL_V2 = 14
REALM_V2 = 16
TOKEN_OWNER_RECORD_V2 = 17
ACCOUNT_GOVERNANCE_V2 = 18
PROGRAM_GOVERNANCE_V2 = 19
MINT_GOVERNANCE_V2 = 20
TOKEN_GOVERNANCE_V2 = 21

REALM_TYPES = (REALM_V1, REALM_V2)
TOKEN_OWNER_RECORD_TYPES = (TOKEN_OWNER_RECORD_V1, TOKEN_OWNER_RECORD_V2)
PROPOSAL_TYPES = (PROPOSAL_V1, PROPOSAL_V2)
VOTE_RECORD_TYPES = (VOTE_RECORD_V1, VOTE_RECORD_V2)
GOVERNANCE_TYPES = (
    ACCOUNT_GOVERNANCE_V1,
    PROGRAM_GOVERNANCE_V1,
    MINT_GOVERNANCE_V1,
    TOKEN_GOVERNANCE_V1,
    ACCOUNT_GOVERNANCE_V2,
    PROGRAM_GOVERNANCE_V2,
    MINT_GOVERNANCE_V2,
    TOKEN_GOVERNANCE_V2,
)

# Byte offsets used for getProgramAccounts memcmp filters
ACCOUNT_TYPE_OFFSET = 0
REALM_OFFSET = 1                      # realm on governance and token owner record accounts
GOVERNANCE_OFFSET = 1                 # governance on proposal accounts
TOKEN_OWNER_RECORD_OWNER_OFFSET = 65  # type + realm + governing mint
VOTE_RECORD_VOTER_OFFSET = 33         # type + proposal


class LayoutError(ValueError):
    """Account data does not match the expected layout."""


class BorshReader:
    """Sequential little-endian reader over account data."""

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def _take(self, size: int) -> bytes:
        if self._pos + size > len(self._data):
            raise LayoutError(f"Unexpected end of account data at offset {self._pos} (+{size})")
        chunk = self._data[self._pos:self._pos + size]
        self._pos += size
        return chunk

    def _unpack(self, fmt: str):
        return struct.unpack(fmt, self._take(struct.calcsize(fmt)))[0]

    def u8(self) -> int:
        return self._unpack("<B")

    def u16(self) -> int:
        return self._unpack("<H")

    def u32(self) -> int:
        return self._unpack("<I")

    def u64(self) -> int:
        return self._unpack("<Q")

    def i64(self) -> int:
        return self._unpack("<q")

    def boolean(self) -> bool:
        return self.u8() != 0

    def skip(self, size: int) -> None:
        self._take(size)

    def pubkey(self) -> str:
        return base58.b58encode(self._take(32)).decode("ascii")

    def string(self) -> str:
        length = self.u32()
        return self._take(length).decode("utf-8", errors="replace")

    def option(self, read: Callable[[], T]) -> Optional[T]:
        tag = self.u8()
        if tag == 0:
            return None
        if tag != 1:
            raise LayoutError(f"Invalid option tag {tag} at offset {self._pos - 1}")
        return read()

    def vec(self, read: Callable[[], T]) -> List[T]:
        return [read() for _ in range(self.u32())]


def account_type_of(data: bytes) -> int:
    if not data:
        raise LayoutError("Empty account data")
    return data[0]


def _expect_type(reader: BorshReader, allowed) -> int:
    account_type = reader.u8()
    if account_type not in allowed:
        raise LayoutError(f"Unexpected account type {account_type}, expected one of {allowed}")
    return account_type


def _amount(reader: BorshReader) -> TokenAmount:
    return TokenAmount(reader.u64())


def decode_realm(pubkey: str, data: bytes) -> Realm:
    reader = BorshReader(data)
    account_type = _expect_type(reader, REALM_TYPES)
    community_mint = reader.pubkey()

    use_voter_weight_addin = reader.boolean()
    use_max_voter_weight_addin = reader.boolean()
    reader.skip(6)
    min_weight = _amount(reader)
    reader.skip(1 + 8)  # max voter weight source: tag + value
    council_mint = reader.option(reader.pubkey)

    reader.skip(6)
    reader.u16()  # voting proposal count (v1) / legacy (v2)
    authority = reader.option(reader.pubkey)
    name = reader.string()

    return Realm(
        pubkey=pubkey,
        account_type=account_type,
        community_mint=community_mint,
        config=RealmConfig(
            council_mint=council_mint,
            min_community_weight_to_create_governance=min_weight,
            use_community_voter_weight_addin=use_voter_weight_addin,
            use_max_community_voter_weight_addin=use_max_voter_weight_addin,
        ),
        authority=authority,
        name=name,
    )


def decode_token_owner_record(pubkey: str, data: bytes) -> TokenOwnerRecord:
    reader = BorshReader(data)
    account_type = _expect_type(reader, TOKEN_OWNER_RECORD_TYPES)
    realm = reader.pubkey()
    mint = reader.pubkey()
    owner = reader.pubkey()
    deposit = _amount(reader)
    if account_type == TOKEN_OWNER_RECORD_V1:
        unrelinquished = reader.u32()
        reader.u32()  # total votes count
    else:
        unrelinquished = reader.u64()
    reader.skip(8)  # outstanding proposal count, version, reserved
    delegate = reader.option(reader.pubkey)

    return TokenOwnerRecord(
        pubkey=pubkey,
        account_type=account_type,
        realm=realm,
        governing_token_mint=mint,
        governing_token_owner=owner,
        governing_token_deposit_amount=deposit,
        unrelinquished_votes_count=unrelinquished,
        governance_delegate=delegate,
    )


def _skip_vote_threshold(reader: BorshReader) -> None:
    tag = reader.u8()
    # YesVotePercentage(u8) and QuorumPercentage(u8) carry a value, Disabled doesn't
    if tag in (0, 1):
        reader.u8()


def _read_state(reader: BorshReader) -> ProposalState:
    raw = reader.u8()
    try:
        return ProposalState(raw)
    except ValueError as e:
        raise LayoutError(f"Unknown proposal state {raw}") from e


def _decode_proposal_v1(pubkey: str, reader: BorshReader) -> Proposal:
    governance = reader.pubkey()
    mint = reader.pubkey()
    state = _read_state(reader)
    owner_record = reader.pubkey()
    reader.skip(2)  # signatories count, signed off count
    yes_votes = _amount(reader)
    no_votes = _amount(reader)
    reader.skip(6)  # instruction counters
    draft_at = reader.i64()
    signing_off_at = reader.option(reader.i64)
    voting_at = reader.option(reader.i64)
    reader.option(reader.u64)  # voting at slot
    voting_completed_at = reader.option(reader.i64)
    reader.option(reader.i64)  # executing at
    closed_at = reader.option(reader.i64)
    reader.u8()  # execution flags
    max_vote_weight = reader.option(lambda: _amount(reader))
    reader.option(lambda: _skip_vote_threshold(reader))
    name = reader.string()
    description_link = reader.string()

    return Proposal(
        pubkey=pubkey,
        account_type=PROPOSAL_V1,
        governance=governance,
        governing_token_mint=mint,
        state=state,
        token_owner_record=owner_record,
        name=name,
        description_link=description_link,
        options=[ProposalOption(label="Yes", vote_weight=yes_votes)],
        deny_vote_weight=no_votes,
        draft_at=draft_at,
        signing_off_at=signing_off_at,
        voting_at=voting_at,
        voting_completed_at=voting_completed_at,
        closed_at=closed_at,
        max_vote_weight=max_vote_weight,
    )


def _read_option(reader: BorshReader) -> ProposalOption:
    label = reader.string()
    weight = _amount(reader)
    reader.skip(1 + 2 + 2 + 2)  # vote result, transaction counters
    return ProposalOption(label=label, vote_weight=weight)


def _decode_proposal_v2(pubkey: str, reader: BorshReader) -> Proposal:
    governance = reader.pubkey()
    mint = reader.pubkey()
    state = _read_state(reader)
    owner_record = reader.pubkey()
    reader.skip(2)  # signatories count, signed off count
    vote_type = reader.u8()
    if vote_type == 1:
        reader.skip(4)  # multi choice: choice type, min/max voter options, max winning options
    options = reader.vec(lambda: _read_option(reader))
    deny = reader.option(lambda: _amount(reader))
    veto = reader.option(lambda: _amount(reader))  # reserved byte (always 0) on newer program versions
    abstain = reader.option(lambda: _amount(reader))
    reader.option(reader.i64)  # start voting at
    draft_at = reader.i64()
    signing_off_at = reader.option(reader.i64)
    voting_at = reader.option(reader.i64)
    reader.option(reader.u64)  # voting at slot
    voting_completed_at = reader.option(reader.i64)
    reader.option(reader.i64)  # executing at
    closed_at = reader.option(reader.i64)
    reader.u8()  # execution flags
    max_vote_weight = reader.option(lambda: _amount(reader))
    reader.option(reader.u32)  # max voting time
    reader.option(lambda: _skip_vote_threshold(reader))
    reader.skip(64)
    name = reader.string()
    description_link = reader.string()
    if reader.remaining >= 8:
        trailing_veto = _amount(reader)
        if veto is None and trailing_veto.raw:
            veto = trailing_veto

    return Proposal(
        pubkey=pubkey,
        account_type=PROPOSAL_V2,
        governance=governance,
        governing_token_mint=mint,
        state=state,
        token_owner_record=owner_record,
        name=name,
        description_link=description_link,
        options=options,
        deny_vote_weight=deny,
        abstain_vote_weight=abstain,
        veto_vote_weight=veto,
        draft_at=draft_at,
        signing_off_at=signing_off_at,
        voting_at=voting_at,
        voting_completed_at=voting_completed_at,
        closed_at=closed_at,
        max_vote_weight=max_vote_weight,
    )


def decode_proposal(pubkey: str, data: bytes) -> Proposal:
    reader = BorshReader(data)
    account_type = _expect_type(reader, PROPOSAL_TYPES)
    if account_type == PROPOSAL_V1:
        return _decode_proposal_v1(pubkey, reader)
    return _decode_proposal_v2(pubkey, reader)


def decode_vote_record(pubkey: str, data: bytes) -> VoteRecord:
    reader = BorshReader(data)
    account_type = _expect_type(reader, VOTE_RECORD_TYPES)
    proposal = reader.pubkey()
    voter = reader.pubkey()
    is_relinquished = reader.boolean()

    if account_type == VOTE_RECORD_V1:
        # Legacy records store Yes(weight) / No(weight)
        tag = reader.u8()
        weight = _amount(reader)
        kind = VoteKind.APPROVE if tag == 0 else VoteKind.DENY
    else:
        weight = _amount(reader)
        tag = reader.u8()
        try:
            kind = VoteKind(tag)
        except ValueError as e:
            raise LayoutError(f"Unknown vote kind {tag}") from e

    return VoteRecord(
        pubkey=pubkey,
        account_type=account_type,
        proposal=proposal,
        governing_token_owner=voter,
        is_relinquished=is_relinquished,
        voter_weight=weight,
        vote_kind=kind,
    )
