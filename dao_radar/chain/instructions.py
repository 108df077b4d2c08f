"""
Cast-vote instruction encoding.

The three user choices map to the program's Vote enum:

- approve: ``Approve([VoteChoice(rank=0, weight_percentage=100)])``
- deny:    ``Deny``
- abstain: ``Abstain``
"""
import struct
from dataclasses import dataclass
from typing import List, Optional

from solders.instruction import AccountMeta, Instruction
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from dao_radar.chain.addresses import PubkeyLike, parse_pubkey, realm_config_address, vote_record_address
from dao_radar.data_models.governance_schemas import VoteChoice, VoteKind

CAST_VOTE_INSTRUCTION = 13


def encode_vote(choice: VoteChoice) -> bytes:
    kind = choice.kind
    if kind == VoteKind.APPROVE:
        # Vec<VoteChoice> with a single full-weight choice on option 0
        return struct.pack("<BIBB", VoteKind.APPROVE, 1, 0, 100)
    return struct.pack("<B", kind)


@dataclass(frozen=True)
class CastVoteAccounts:
    """Accounts addressed by a cast-vote instruction."""
    program_id: PubkeyLike
    realm: PubkeyLike
    governance: PubkeyLike
    proposal: PubkeyLike
    proposal_owner_record: PubkeyLike
    voter_token_owner_record: PubkeyLike
    governance_authority: PubkeyLike
    governing_token_mint: PubkeyLike
    payer: PubkeyLike
    voter_weight_record: Optional[PubkeyLike] = None
    max_voter_weight_record: Optional[PubkeyLike] = None


def build_cast_vote_instruction(accounts: CastVoteAccounts, choice: VoteChoice) -> Instruction:
    program_id = parse_pubkey(accounts.program_id, "program id")
    realm = parse_pubkey(accounts.realm, "realm")
    proposal = parse_pubkey(accounts.proposal, "proposal")
    voter_record = parse_pubkey(accounts.voter_token_owner_record, "voter token owner record")

    metas: List[AccountMeta] = [
        AccountMeta(realm, is_signer=False, is_writable=False),
        AccountMeta(parse_pubkey(accounts.governance, "governance"), is_signer=False, is_writable=True),
        AccountMeta(proposal, is_signer=False, is_writable=True),
        AccountMeta(parse_pubkey(accounts.proposal_owner_record, "proposal owner record"), is_signer=False, is_writable=True),
        AccountMeta(voter_record, is_signer=False, is_writable=True),
        AccountMeta(parse_pubkey(accounts.governance_authority, "governance authority"), is_signer=True, is_writable=False),
        AccountMeta(vote_record_address(program_id, proposal, voter_record), is_signer=False, is_writable=True),
        AccountMeta(parse_pubkey(accounts.governing_token_mint, "governing token mint"), is_signer=False, is_writable=False),
        AccountMeta(parse_pubkey(accounts.payer, "payer"), is_signer=True, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(realm_config_address(program_id, realm), is_signer=False, is_writable=False),
    ]
    if accounts.voter_weight_record is not None:
        metas.append(AccountMeta(parse_pubkey(accounts.voter_weight_record), is_signer=False, is_writable=False))
    if accounts.max_voter_weight_record is not None:
        metas.append(AccountMeta(parse_pubkey(accounts.max_voter_weight_record), is_signer=False, is_writable=False))

    data = struct.pack("<B", CAST_VOTE_INSTRUCTION) + encode_vote(choice)
    return Instruction(program_id, data, metas)

