"""Hand-packed governance account data for decoder and client tests."""
import struct
from typing import List, Optional, Tuple

from solders.pubkey import Pubkey

from ..instructions import CAST_VOTE_INSTRUCTION
from ...data_models.governance_schemas import VoteKind


def key(pubkey) -> bytes:
    return bytes(Pubkey.from_string(str(pubkey)))


def string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return struct.pack("<I", len(raw)) + raw


def option(payload: Optional[bytes]) -> bytes:
    return b"\x00" if payload is None else b"\x01" + payload


def realm_v2(community_mint, name: str, council_mint=None, authority=None) -> bytes:
    return (
        bytes([16])
        + key(community_mint)
        + b"\x00\x00"                 # voter weight addins
        + bytes(6)
        + struct.pack("<Q", 1000)     # min community weight to create governance
        + bytes(1 + 8)                # max voter weight source
        + option(key(council_mint) if council_mint else None)
        + bytes(6)
        + struct.pack("<H", 0)
        + option(key(authority) if authority else None)
        + string(name)
    )


def token_owner_record_v2(realm, mint, owner, deposit: int, delegate=None) -> bytes:
    return (
        bytes([17])
        + key(realm)
        + key(mint)
        + key(owner)
        + struct.pack("<Q", deposit)
        + struct.pack("<Q", 0)        # unrelinquished votes
        + bytes(8)
        + option(key(delegate) if delegate else None)
    )


def proposal_v2(
    governance,
    mint,
    owner_record,
    state: int,
    name: str,
    draft_at: int = 1_700_000_000,
    voting_at: Optional[int] = None,
    options: Tuple[Tuple[str, int], ...] = (("Approve", 0),),
    deny: Optional[int] = 0,
    abstain: Optional[int] = None,
    description_link: str = "",
) -> bytes:
    packed_options: List[bytes] = [
        string(label) + struct.pack("<Q", weight) + bytes(1 + 2 + 2 + 2) for label, weight in options
    ]
    return (
        bytes([14])
        + key(governance)
        + key(mint)
        + bytes([state])
        + key(owner_record)
        + bytes(2)
        + b"\x00"                     # single choice vote type
        + struct.pack("<I", len(options)) + b"".join(packed_options)
        + option(struct.pack("<Q", deny) if deny is not None else None)
        + option(None)                # veto
        + option(struct.pack("<Q", abstain) if abstain is not None else None)
        + option(None)                # start voting at
        + struct.pack("<q", draft_at)
        + option(None)                # signing off at
        + option(struct.pack("<q", voting_at) if voting_at is not None else None)
        + option(None)                # voting at slot
        + option(None)                # voting completed at
        + option(None)                # executing at
        + option(None)                # closed at
        + b"\x00"                     # execution flags
        + option(None)                # max vote weight
        + option(None)                # max voting time
        + option(None)                # vote threshold
        + bytes(64)
        + string(name)
        + string(description_link)
    )


def proposal_v1(governance, mint, owner_record, state: int, name: str, yes: int, no: int, draft_at: int) -> bytes:
    return (
        bytes([5])
        + key(governance)
        + key(mint)
        + bytes([state])
        + key(owner_record)
        + bytes(2)
        + struct.pack("<QQ", yes, no)
        + bytes(6)
        + struct.pack("<q", draft_at)
        + option(None) * 6
        + b"\x00"
        + option(None)
        + option(None)
        + string(name)
        + string("")
    )


def vote_record_v2(proposal, voter, weight: int, kind: int) -> bytes:
    return bytes([12]) + key(proposal) + key(voter) + b"\x00" + struct.pack("<Q", weight) + bytes([kind])


def instruction_choice(data: bytes) -> Optional[VoteKind]:
    """Read the vote kind back from cast-vote instruction data."""
    if len(data) < 2 or data[0] != CAST_VOTE_INSTRUCTION:
        return None
    return VoteKind(data[1])
