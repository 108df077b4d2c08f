"""In-memory stand-ins for the chain layer used across service and router tests."""
import asyncio
from typing import AsyncIterator, Dict, List, Optional, Set

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature

from ...chain.program import GovernanceProgramClient
from ...chain.transactions import TransactionSender
from ...data_models.governance_schemas import (
    Proposal,
    ProposalOption,
    ProposalState,
    Realm,
    TokenOwnerRecord,
    VoteKind,
    VoteRecord,
)
from ...exceptions import UpstreamError

PROGRAM_ID = "GovER5Lthms3bLBqWub97yVrMmEogzX7xNjdXpPPCVZw"


def new_key() -> str:
    return str(Pubkey.new_unique())


def make_realm(name: str, realm_id: Optional[str] = None) -> Realm:
    return Realm(pubkey=realm_id or new_key(), account_type=16, community_mint=new_key(), name=name)


def make_record(realm: str, owner: str, amount: int, mint: Optional[str] = None) -> TokenOwnerRecord:
    return TokenOwnerRecord(
        pubkey=new_key(),
        account_type=17,
        realm=realm,
        governing_token_mint=mint or new_key(),
        governing_token_owner=owner,
        governing_token_deposit_amount=amount,
    )


def make_proposal(
    name: str,
    state: ProposalState = ProposalState.VOTING,
    draft_at: int = 1_000,
    voting_at: Optional[int] = None,
    mint: Optional[str] = None,
    yes: int = 0,
) -> Proposal:
    return Proposal(
        pubkey=new_key(),
        account_type=14,
        governance=new_key(),
        governing_token_mint=mint or new_key(),
        state=state,
        token_owner_record=new_key(),
        name=name,
        options=[ProposalOption(label="Approve", vote_weight=yes)],
        deny_vote_weight=0,
        draft_at=draft_at,
        voting_at=voting_at,
    )


def make_vote_record(proposal: str, voter: str, kind: VoteKind = VoteKind.APPROVE, weight: int = 1) -> VoteRecord:
    return VoteRecord(
        pubkey=new_key(),
        account_type=12,
        proposal=proposal,
        governing_token_owner=voter,
        voter_weight=weight,
        vote_kind=kind,
    )


class FakeProgramClient(GovernanceProgramClient):
    """
    Dict-backed program client.

    ``failing_*`` sets make the matching lookups raise UpstreamError;
    ``delays`` adds a per-realm sleep to shuffle completion order.
    """

    def __init__(self):
        self.realms: Dict[str, Realm] = {}
        self.records: List[TokenOwnerRecord] = []
        self.proposal_batches: Dict[str, List[List[Proposal]]] = {}
        self.proposals: Dict[str, Proposal] = {}
        self.vote_records: List[VoteRecord] = []
        self.vote_records_by_address: Dict[str, VoteRecord] = {}
        self.records_by_address: Dict[str, TokenOwnerRecord] = {}
        self.delays: Dict[str, float] = {}
        self.failing_realms: Set[str] = set()
        self.failing_proposal_realms: Set[str] = set()
        self.failing_proposals: Set[str] = set()
        self.discovery_error: Optional[Exception] = None
        self.discovery_calls = 0
        self.batch_calls: Dict[str, int] = {}

    def add_realm(self, realm: Realm, batches: Optional[List[List[Proposal]]] = None) -> Realm:
        self.realms[realm.pubkey] = realm
        self.proposal_batches[realm.pubkey] = batches or []
        for batch in batches or []:
            for proposal in batch:
                self.proposals[proposal.pubkey] = proposal
        return realm

    async def get_realm(self, realm):
        realm = str(realm)
        await asyncio.sleep(self.delays.get(realm, 0))
        if realm in self.failing_realms:
            raise UpstreamError(f"realm {realm} unavailable")
        return self.realms.get(realm)

    async def get_realms(self, program_id):
        return list(self.realms.values())

    async def get_token_owner_records_by_owner(self, program_id, owner):
        self.discovery_calls += 1
        if self.discovery_error is not None:
            raise self.discovery_error
        return [r for r in self.records if r.governing_token_owner == str(owner)]

    async def get_token_owner_record(self, address):
        return self.records_by_address.get(str(address))

    async def iter_proposal_batches(self, program_id, realm) -> AsyncIterator[List[Proposal]]:
        realm = str(realm)
        self.batch_calls[realm] = self.batch_calls.get(realm, 0) + 1
        if realm in self.failing_proposal_realms:
            raise UpstreamError(f"proposals of {realm} unavailable")
        for batch in self.proposal_batches.get(realm, []):
            await asyncio.sleep(0)
            yield batch

    async def get_proposal(self, address):
        address = str(address)
        if address in self.failing_proposals:
            raise UpstreamError(f"proposal {address} unavailable")
        return self.proposals.get(address)

    async def get_vote_record(self, address):
        return self.vote_records_by_address.get(str(address))

    async def get_vote_records_by_voter(self, program_id, voter):
        return [r for r in self.vote_records if r.governing_token_owner == str(voter)]


class FakeSender(TransactionSender):
    def __init__(self):
        self.sent: List[bytes] = []
        self.send_error: Optional[Exception] = None
        self.confirm_error: Optional[Exception] = None
        self.confirmed: List[str] = []

    async def latest_blockhash(self) -> Hash:
        return Hash.default()

    async def send_raw(self, payload: bytes) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(payload)
        return str(Signature.default())

    async def confirm(self, signature: str) -> None:
        if self.confirm_error is not None:
            raise self.confirm_error
        self.confirmed.append(signature)
