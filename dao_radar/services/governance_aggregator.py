"""
Governance aggregator.

Builds per-wallet and per-realm views from raw governance accounts:

- discovers the realms a wallet has deposited into and sums its voting power
  across every deposit record it holds in each realm
- counts proposals in the Voting state, draining every proposal batch
- lists a realm's proposals with Voting first, newest first within each group

Per-realm work runs through ``run_with_concurrency`` so one failing realm is
logged and omitted instead of failing the whole pass. Errors raised by the
entry point itself (malformed wallet, failed discovery query) reach the caller
as DaoRadarError subclasses.
"""
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from dao_radar.chain.addresses import parse_pubkey, token_owner_record_address, vote_record_address
from dao_radar.chain.program import GovernanceProgramClient
from dao_radar.config import common_settings
from dao_radar.data_models.governance_schemas import (
    ActiveProposalAlert,
    BrowseDaoSummary,
    DaoView,
    Proposal,
    ProposalSummary,
    Realm,
    TokenOwnerRecord,
    VoteHistoryItem,
    VoteRecord,
)
from dao_radar.exceptions import AggregationCancelled, RateLimitError, ResourceNotFoundError
from dao_radar.utils.concurrency import CancellationToken, Failure, check_cancelled, run_with_concurrency
from dao_radar.utils.logger import logger
from dao_radar.utils.numeric import TokenAmount, safe_to_number
from dao_radar.utils.retry import retry_async

T = TypeVar("T")

ACTIVE_PROPOSAL_LIST_LIMIT = 5

# Well-known realms shown when no wallet is connected
FEATURED_REALMS: Tuple[Tuple[str, str], ...] = (
    ("Mango DAO", "DPiH3H3c7t47BMxqTxLsuPQpEC6Kne8GA9VXbxpnZxFE"),
    ("Marinade.Finance", "3gmcbygQUUDgmtDtx41R7xSf3K4oFXrH9icPNijyq9pS"),
    ("Drift Protocol", "9nUyxzVL2FUMuWUiVZG66gwK15CJiM3PoLkfrnGfkvt6"),
    ("Jupiter Aggregator", "2Z5BXuRCJPqYUCBGyQTwAXHeJoFAnbtvoXja19aZFLKY"),
    ("Pyth DAO", "WQa9YVA3SVspDUjmnjMj4uygJpxR814mD931FhLxLvx"),
    ("MonkeDAO", "m8BR9yA89AJ9f2u3KeAFasJSuXDnd3xYDJJkBvQ2iw6"),
    ("Grape", "By2sVGZXwfQq6rAiAM3rNPJ9iQfb5e2QhnF4YjJ4Bip"),
    ("Helium", "6qGHqcZY4zLCWFvvBKfr8tHQfkD8arz8mAQPt4TDvTy5"),
    ("Squads", "6FYxSU9GE5imNLnqbUmJDktBfgVQeoVXVCVgtNuukS86"),
    ("Solend", "5EuXAPZCpzZnqpzVRX5Ytizh9BFVtbz3H8Xk9H5onxHD"),
    ("Raydium DAO", "GDBJ3qv4tJXiCbz5ASkSMYq6Xfb35MdXsMzgVaMnr9Q7"),
    ("UXD Protocol", "DkSvNgykZPPFczhJVh8HDkhz25ByrDoPcB32q75AYu9k"),
)


def sort_proposals(proposals: Sequence[Proposal]) -> List[Proposal]:
    """Voting proposals first, then descending effective timestamp. Stable."""
    return sorted(proposals, key=lambda p: (0 if p.is_voting else 1, -p.effective_timestamp))


@dataclass(frozen=True)
class VotingPower:
    """Summed deposits of one wallet in one realm."""
    total: TokenAmount
    primary_record: Optional[TokenOwnerRecord]

    @property
    def as_number(self):
        return safe_to_number(self.total)


def compute_voting_power(records: Sequence[TokenOwnerRecord]) -> VotingPower:
    """
    Sum deposits across every record; the primary record is the one with the
    largest individual deposit (first one wins a tie).
    """
    total = TokenAmount.zero()
    primary: Optional[TokenOwnerRecord] = None
    for record in records:
        amount = record.governing_token_deposit_amount
        total = total + amount
        if primary is None or amount > primary.governing_token_deposit_amount:
            primary = record
    return VotingPower(total=total, primary_record=primary)


def group_records_by_realm(records: Sequence[TokenOwnerRecord]) -> "OrderedDict[str, List[TokenOwnerRecord]]":
    """Group deposit records by realm, keeping first-discovery order."""
    grouped: "OrderedDict[str, List[TokenOwnerRecord]]" = OrderedDict()
    for record in records:
        grouped.setdefault(record.realm, []).append(record)
    return grouped


class GovernanceAggregator:
    """Aggregation over a GovernanceProgramClient."""

    def __init__(
        self,
        program: GovernanceProgramClient,
        program_id: Optional[str] = None,
        concurrency: Optional[int] = None,
        history_concurrency: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
    ):
        self.program = program
        self.program_id = program_id or common_settings.SPL_GOVERNANCE_PROGRAM_ID
        self.concurrency = concurrency or common_settings.AGGREGATION_CONCURRENCY
        self.history_concurrency = history_concurrency or common_settings.HISTORY_CONCURRENCY
        self.max_retries = max_retries if max_retries is not None else common_settings.RATE_LIMIT_MAX_RETRIES
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else common_settings.RATE_LIMIT_BASE_DELAY_SECONDS
        )

    async def _with_retry(self, func: Callable[[], Awaitable[T]], name: str) -> T:
        return await retry_async(
            func,
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            retry_on=(RateLimitError,),
            name=name,
        )

    # ==================
    # Wallet views
    # ==================

    async def get_user_organizations(
        self, wallet: str, token: Optional[CancellationToken] = None
    ) -> List[DaoView]:
        """
        Aggregate every realm the wallet has deposited governing tokens into.

        Results keep the order in which realms were first seen among the
        wallet's deposit records. Realms whose account cannot be loaded are
        omitted; realms whose proposals cannot be loaded are kept with zero
        active proposals.

        Raises:
            InvalidInputError: If the wallet is not a valid public key
            DaoRadarError: If the deposit-record discovery query fails
            AggregationCancelled: If the token was cancelled mid-pass
        """
        owner = parse_pubkey(wallet, "wallet")
        records = await self._with_retry(
            lambda: self.program.get_token_owner_records_by_owner(self.program_id, owner),
            name=f"token owner records for {wallet}",
        )
        check_cancelled(token)

        grouped = group_records_by_realm(records)
        logger.info(f"[Aggregator] Wallet {wallet} has {len(records)} deposit records in {len(grouped)} realms")

        async def build_view(realm_id: str) -> DaoView:
            realm = await self._load_realm(realm_id)
            check_cancelled(token)
            power = compute_voting_power(grouped[realm_id])
            active = await self._active_proposals_or_empty(realm_id, token)
            return DaoView(
                realm_id=realm_id,
                name=realm.name,
                realm=realm,
                voting_power=power.as_number,
                active_proposals=len(active),
                active_proposal_list=[ProposalSummary.from_proposal(p) for p in active[:ACTIVE_PROPOSAL_LIST_LIMIT]],
                token_owner_record=power.primary_record,
            )

        outcomes = await run_with_concurrency(list(grouped.keys()), build_view, self.concurrency)
        check_cancelled(token)
        return self._collect(list(grouped.keys()), outcomes, "realm")

    async def get_featured_organizations(self, token: Optional[CancellationToken] = None) -> List[DaoView]:
        """Curated realms with their active proposal counts (no wallet, no voting power)."""
        realm_ids = [pubkey for _, pubkey in FEATURED_REALMS]

        async def build_view(realm_id: str) -> DaoView:
            realm = await self._load_realm(realm_id)
            check_cancelled(token)
            active = await self._active_proposals_or_empty(realm_id, token)
            return DaoView(
                realm_id=realm_id,
                name=realm.name,
                realm=realm,
                active_proposals=len(active),
                active_proposal_list=[ProposalSummary.from_proposal(p) for p in active[:ACTIVE_PROPOSAL_LIST_LIMIT]],
            )

        outcomes = await run_with_concurrency(realm_ids, build_view, self.concurrency)
        check_cancelled(token)
        return self._collect(realm_ids, outcomes, "featured realm")

    async def list_all_organizations(self, token: Optional[CancellationToken] = None) -> List[BrowseDaoSummary]:
        """Every realm of the program as an ``{id, name}`` summary sorted by name."""
        realms = await self._with_retry(lambda: self.program.get_realms(self.program_id), name="all realms")
        check_cancelled(token)
        summaries = [BrowseDaoSummary(id=r.pubkey, name=r.name or "Unnamed DAO") for r in realms]
        summaries.sort(key=lambda s: s.name.lower())
        logger.info(f"[Aggregator] Listed {len(summaries)} realms")
        return summaries

    async def get_user_vote_history(
        self, wallet: str, limit: int = 20, token: Optional[CancellationToken] = None
    ) -> List[VoteHistoryItem]:
        """
        The wallet's most recent vote records with their proposals.

        A proposal that fails to load leaves ``proposal=None`` on its item.
        """
        voter = parse_pubkey(wallet, "wallet")
        records = await self._with_retry(
            lambda: self.program.get_vote_records_by_voter(self.program_id, voter),
            name=f"vote records for {wallet}",
        )
        check_cancelled(token)
        records = records[:max(limit, 0)]

        async def load_proposal(record: VoteRecord) -> Optional[Proposal]:
            return await self._with_retry(
                lambda: self.program.get_proposal(record.proposal),
                name=f"proposal {record.proposal}",
            )

        outcomes = await run_with_concurrency(records, load_proposal, self.history_concurrency)
        check_cancelled(token)

        history: List[VoteHistoryItem] = []
        for record, outcome in zip(records, outcomes):
            if isinstance(outcome, Failure):
                logger.warning(f"[Aggregator] Could not load proposal {record.proposal}: {outcome.error}")
                history.append(VoteHistoryItem(vote_record=record))
            else:
                history.append(VoteHistoryItem(vote_record=record, proposal=outcome.value))

        # Newest proposals first; records whose proposal is unknown go last
        history.sort(key=lambda item: -(item.proposal.effective_timestamp if item.proposal else -1))
        return history

    async def collect_active_alerts(
        self, views: Sequence[DaoView], token: Optional[CancellationToken] = None
    ) -> List[ActiveProposalAlert]:
        """
        Every Voting proposal across the given views, as alert candidates.

        Views whose short list already holds all of their active proposals are
        used as-is; the others are re-listed.
        """
        async def alerts_for(view: DaoView) -> List[ActiveProposalAlert]:
            if view.active_proposals <= len(view.active_proposal_list):
                summaries = view.active_proposal_list
            else:
                active = await self._active_proposals(view.realm_id, token)
                summaries = [ProposalSummary.from_proposal(p) for p in active]
            return [
                ActiveProposalAlert(
                    proposal_id=s.pubkey, proposal_name=s.name, dao_name=view.name, realm_id=view.realm_id
                )
                for s in summaries
            ]

        outcomes = await run_with_concurrency(list(views), alerts_for, self.concurrency)
        check_cancelled(token)
        alerts: List[ActiveProposalAlert] = []
        for batch in self._collect([v.realm_id for v in views], outcomes, "alert realm"):
            alerts.extend(batch)
        return alerts

    # ==================
    # Realm and proposal lookups
    # ==================

    async def get_organization_proposals(
        self,
        realm_id: str,
        program_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[Proposal]:
        """Every proposal of the realm, all batches drained, in display order."""
        parse_pubkey(realm_id, "realm")
        proposals = await self._drain_proposals(realm_id, program_id or self.program_id, token)
        return sort_proposals(proposals)

    async def get_organization(self, realm_id: str) -> Realm:
        """
        Raises:
            InvalidInputError: If the id is malformed
            ResourceNotFoundError: If no realm account exists at the address
        """
        parse_pubkey(realm_id, "realm")
        realm = await self.program.get_realm(realm_id)
        if realm is None:
            raise ResourceNotFoundError(f"Realm {realm_id} not found")
        return realm

    async def get_proposal(self, proposal_id: str) -> Proposal:
        parse_pubkey(proposal_id, "proposal")
        proposal = await self.program.get_proposal(proposal_id)
        if proposal is None:
            raise ResourceNotFoundError(f"Proposal {proposal_id} not found")
        return proposal

    async def get_voter_record(self, realm_id: str, mint_id: str, wallet: str) -> Optional[TokenOwnerRecord]:
        """The wallet's deposit record for one realm and mint, or None when it has none."""
        address = token_owner_record_address(self.program_id, realm_id, mint_id, wallet)
        return await self.program.get_token_owner_record(address)

    async def get_vote_record_for(self, proposal_id: str, voter_record_id: str) -> Optional[VoteRecord]:
        """The vote record of one deposit record on one proposal, or None when it has not voted."""
        address = vote_record_address(self.program_id, proposal_id, voter_record_id)
        return await self.program.get_vote_record(address)

    # ==================
    # Internals
    # ==================

    async def _load_realm(self, realm_id: str) -> Realm:
        realm = await self._with_retry(lambda: self.program.get_realm(realm_id), name=f"realm {realm_id}")
        if realm is None:
            raise ResourceNotFoundError(f"Realm {realm_id} not found")
        return realm

    async def _drain_proposals(
        self, realm_id: str, program_id: str, token: Optional[CancellationToken]
    ) -> List[Proposal]:
        proposals: List[Proposal] = []
        batches = self.program.iter_proposal_batches(program_id, realm_id)
        async for batch in batches:
            check_cancelled(token)
            proposals.extend(batch)
        return proposals

    async def _active_proposals(self, realm_id: str, token: Optional[CancellationToken]) -> List[Proposal]:
        proposals = await self._with_retry(
            lambda: self._drain_proposals(realm_id, self.program_id, token),
            name=f"proposals of {realm_id}",
        )
        return sort_proposals([p for p in proposals if p.is_voting])

    async def _active_proposals_or_empty(self, realm_id: str, token: Optional[CancellationToken]) -> List[Proposal]:
        try:
            return await self._active_proposals(realm_id, token)
        except AggregationCancelled:
            raise
        except Exception as e:
            logger.warning(f"[Aggregator] Could not count proposals of realm {realm_id}: {e}")
            return []

    @staticmethod
    def _collect(keys: Sequence[str], outcomes: Sequence, what: str) -> list:
        values = []
        failed: Dict[str, BaseException] = {}
        for key, outcome in zip(keys, outcomes):
            if isinstance(outcome, Failure):
                failed[key] = outcome.error
            else:
                values.append(outcome.value)
        for key, error in failed.items():
            logger.warning(f"[Aggregator] Omitting {what} {key}: {error}")
        return values
