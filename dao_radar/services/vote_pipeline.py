"""
Vote submission pipeline.

Each (proposal, wallet) pair moves through an explicit state machine::

    Idle -> Optimistic -> Submitting -> Confirmed
                                     -> Failed (state removed, back to Idle)

``Idle`` is the absence of an entry in the VoteStateStore. ``begin`` records
the optimistic vote before any network call so the caller can disable
re-voting immediately. ``submit`` builds, signs, broadcasts and confirms the
cast-vote transaction, then reads the vote record back. If that read fails
the optimistic placeholder is kept and marked confirmed from the local side,
also when the read-back is cancelled.
"""
import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from dao_radar.chain.addresses import parse_pubkey
from dao_radar.chain.instructions import CastVoteAccounts, build_cast_vote_instruction
from dao_radar.chain.transactions import TransactionSender
from dao_radar.config import common_settings
from dao_radar.data_models.governance_schemas import VoteChoice, VoteRecord
from dao_radar.exceptions import (
    DaoRadarError,
    InvalidInputError,
    RateLimitError,
    UpstreamError,
    UpstreamTimeoutError,
    VoteInProgressError,
)
from dao_radar.services.governance_aggregator import GovernanceAggregator
from dao_radar.utils.logger import logger


class VotePhase(str, Enum):
    OPTIMISTIC = "optimistic"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class VoteSource(str, Enum):
    LOCAL = "local"   # placeholder written by this pipeline
    CHAIN = "chain"   # vote record read back from the network


@dataclass(frozen=True)
class VoteState:
    proposal_id: str
    wallet: str
    choice: VoteChoice
    phase: VotePhase
    source: VoteSource = VoteSource.LOCAL
    signature: Optional[str] = None
    vote_record: Optional[VoteRecord] = None

    @property
    def is_pending(self) -> bool:
        return self.phase in (VotePhase.OPTIMISTIC, VotePhase.SUBMITTING)

    @property
    def is_confirmed(self) -> bool:
        return self.phase == VotePhase.CONFIRMED


StateKey = Tuple[str, str]
StateListener = Callable[[StateKey, Optional[VoteState]], None]


class VoteStateStore:
    """
    Observable map of (proposal, wallet) to the current VoteState.

    Holds at most ``max_entries`` states. On overflow the least recently
    updated settled votes are dropped (and announced as None); pending votes
    are never evicted.
    """

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries if max_entries is not None else common_settings.VOTE_STATE_MAX_ENTRIES
        self._states: Dict[StateKey, VoteState] = {}
        self._listeners: List[StateListener] = []

    def get(self, proposal_id: str, wallet: str) -> Optional[VoteState]:
        return self._states.get((proposal_id, wallet))

    def set(self, state: VoteState) -> None:
        key = (state.proposal_id, state.wallet)
        self._states.pop(key, None)
        self._states[key] = state
        self._notify(key, state)
        self._evict()

    def remove(self, proposal_id: str, wallet: str) -> None:
        key = (proposal_id, wallet)
        if self._states.pop(key, None) is not None:
            self._notify(key, None)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _evict(self) -> None:
        overflow = len(self._states) - self.max_entries
        if overflow <= 0:
            return
        settled = [key for key, state in self._states.items() if not state.is_pending][:overflow]
        for key in settled:
            del self._states[key]
            self._notify(key, None)

    def _notify(self, key: StateKey, state: Optional[VoteState]) -> None:
        for listener in list(self._listeners):
            try:
                listener(key, state)
            except Exception as e:
                logger.error(f"[VotePipeline] State listener failed: {e}")

    def __len__(self) -> int:
        return len(self._states)


# ==================
# Wallet signing
# ==================

class WalletSigner(Protocol):
    @property
    def public_key(self) -> Pubkey:
        ...

    async def sign_transaction(self, transaction: Transaction) -> Transaction:
        ...


class KeypairSigner:
    """Signs with a local keypair (scripts, tests, custodial setups)."""

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    @property
    def public_key(self) -> Pubkey:
        return self._keypair.pubkey()

    async def sign_transaction(self, transaction: Transaction) -> Transaction:
        transaction.sign([self._keypair], transaction.message.recent_blockhash)
        return transaction


# ==================
# Error classification
# ==================

@dataclass(frozen=True)
class SubmissionError:
    category: str
    message: str
    retryable: bool


_CATEGORY_MESSAGES = {
    "rejected": ("The wallet declined to sign the vote.", True),
    "simulation_failed": ("The network rejected the vote during simulation.", False),
    "timeout": ("The vote was not confirmed in time. Check the proposal before voting again.", True),
    "rate_limited": ("The RPC endpoint is rate limiting requests. Try again in a moment.", True),
    "network": ("Could not reach the network. Try again.", True),
    "already_voted": ("This wallet has already voted on this proposal.", False),
    "insufficient_funds": ("The wallet cannot pay the transaction fee.", False),
    "no_voting_power": ("This wallet has no deposited tokens for this proposal's governing mint.", False),
    "proposal_closed": ("This proposal is not open for voting.", False),
    "unknown": ("The vote failed.", True),
}


def _category_of(error: BaseException) -> str:
    text = str(error).lower()
    if "already voted" in text or "votealreadyexists" in text or "vote already exists" in text:
        return "already_voted"
    if "insufficient funds" in text or "insufficient lamports" in text:
        return "insufficient_funds"
    if "user rejected" in text or "rejected the request" in text or "declined" in text:
        return "rejected"
    if isinstance(error, RateLimitError) or "429" in text or "rate limit" in text:
        return "rate_limited"
    if (
        isinstance(error, (UpstreamTimeoutError, asyncio.TimeoutError))
        or "timed out" in text
        or "block height exceeded" in text
    ):
        return "timeout"
    if "simulation failed" in text or "custom program error" in text or "preflight" in text:
        return "simulation_failed"
    if isinstance(error, (UpstreamError, ConnectionError)):
        return "network"
    return "unknown"


def classify_submission_error(error: BaseException) -> SubmissionError:
    """Map a failure anywhere in build/sign/broadcast/confirm to a user-facing category."""
    category = _category_of(error)
    message, retryable = _CATEGORY_MESSAGES[category]
    if category == "unknown" and str(error):
        message = f"{message} {error}"
    return SubmissionError(category=category, message=message, retryable=retryable)


class _PipelineAbort(Exception):
    """Pre-flight check failed with a known category."""

    def __init__(self, category: str, detail: str):
        super().__init__(detail)
        self.category = category


# ==================
# Pipeline
# ==================

@dataclass(frozen=True)
class VoteResult:
    proposal_id: str
    wallet: str
    phase: VotePhase
    state: Optional[VoteState] = None
    signature: Optional[str] = None
    error: Optional[SubmissionError] = None

    @property
    def ok(self) -> bool:
        return self.phase == VotePhase.CONFIRMED


class VotePipeline:
    def __init__(
        self,
        aggregator: GovernanceAggregator,
        sender: TransactionSender,
        store: Optional[VoteStateStore] = None,
        sign_timeout: Optional[float] = None,
    ):
        self.aggregator = aggregator
        self.sender = sender
        self.store = store if store is not None else VoteStateStore()
        self.sign_timeout = sign_timeout or common_settings.CONFIRM_TIMEOUT_SECONDS

    def begin(self, proposal_id: str, wallet: str, choice: VoteChoice) -> VoteState:
        """
        Record the optimistic vote. Runs without awaiting anything.

        Raises:
            VoteInProgressError: If a vote for the pair is already pending
        """
        existing = self.store.get(proposal_id, wallet)
        if existing is not None and existing.is_pending:
            raise VoteInProgressError()
        state = VoteState(proposal_id=proposal_id, wallet=wallet, choice=VoteChoice(choice), phase=VotePhase.OPTIMISTIC)
        self.store.set(state)
        return state

    async def cast_vote(
        self, realm_id: str, proposal_id: str, signer: WalletSigner, choice: VoteChoice
    ) -> VoteResult:
        """Run the whole pipeline for one vote. Never raises for submission failures."""
        wallet = str(signer.public_key)
        existing = self.store.get(proposal_id, wallet)
        if existing is not None and existing.is_confirmed:
            return VoteResult(
                proposal_id=proposal_id,
                wallet=wallet,
                phase=VotePhase.FAILED,
                state=existing,
                error=classify_submission_error(_PipelineAbort("already_voted", "already voted")),
            )
        state = self.begin(proposal_id, wallet, choice)
        return await self.submit(realm_id, state, signer)

    async def submit(self, realm_id: str, state: VoteState, signer: WalletSigner) -> VoteResult:
        proposal_id, wallet = state.proposal_id, state.wallet
        submitting = replace(state, phase=VotePhase.SUBMITTING)
        self.store.set(submitting)

        try:
            signature, voter_record = await self._submit(realm_id, submitting, signer)
        except asyncio.CancelledError:
            self.store.remove(proposal_id, wallet)
            raise
        except Exception as e:
            self.store.remove(proposal_id, wallet)
            if isinstance(e, _PipelineAbort):
                message, retryable = _CATEGORY_MESSAGES[e.category]
                error = SubmissionError(category=e.category, message=message, retryable=retryable)
            else:
                error = classify_submission_error(e)
            logger.warning(
                f"[VotePipeline] Vote on {proposal_id} by {wallet} failed ({error.category}): {e}"
            )
            return VoteResult(proposal_id=proposal_id, wallet=wallet, phase=VotePhase.FAILED, error=error)

        confirmed = replace(submitting, phase=VotePhase.CONFIRMED, signature=signature)
        try:
            confirmed = await self._reconcile(confirmed, voter_record)
        finally:
            # The transaction is confirmed even when the read-back is interrupted
            self.store.set(confirmed)
        logger.info(f"[VotePipeline] Vote on {proposal_id} by {wallet} confirmed ({confirmed.source.value})")
        return VoteResult(
            proposal_id=proposal_id, wallet=wallet, phase=VotePhase.CONFIRMED, state=confirmed, signature=signature
        )

    async def _submit(self, realm_id: str, state: VoteState, signer: WalletSigner) -> Tuple[str, str]:
        proposal = await self.aggregator.get_proposal(state.proposal_id)
        if not proposal.is_voting:
            raise _PipelineAbort("proposal_closed", f"proposal is {proposal.state.label}")

        # The voter's own deposit record for the proposal's governing mint
        voter_record = await self.aggregator.get_voter_record(realm_id, proposal.governing_token_mint, state.wallet)
        if voter_record is None:
            raise _PipelineAbort("no_voting_power", "no token owner record for the governing mint")

        voter = parse_pubkey(state.wallet, "wallet")
        if voter != signer.public_key:
            raise InvalidInputError("Signer does not match the voting wallet")

        instruction = build_cast_vote_instruction(
            CastVoteAccounts(
                program_id=self.aggregator.program_id,
                realm=realm_id,
                governance=proposal.governance,
                proposal=proposal.pubkey,
                proposal_owner_record=proposal.token_owner_record,
                voter_token_owner_record=voter_record.pubkey,
                governance_authority=voter,
                governing_token_mint=proposal.governing_token_mint,
                payer=voter,
            ),
            state.choice,
        )

        blockhash = await self.sender.latest_blockhash()
        message = Message.new_with_blockhash([instruction], voter, blockhash)
        unsigned = Transaction.new_unsigned(message)
        try:
            signed = await asyncio.wait_for(signer.sign_transaction(unsigned), timeout=self.sign_timeout)
        except asyncio.TimeoutError as e:
            raise UpstreamTimeoutError("Wallet did not sign in time") from e

        signature = await self.sender.send_raw(bytes(signed))
        logger.info(f"[VotePipeline] Broadcast vote on {state.proposal_id}: {signature}")
        await self.sender.confirm(signature)
        return signature, voter_record.pubkey

    async def _reconcile(self, state: VoteState, voter_record: str) -> VoteState:
        try:
            record = await self.aggregator.get_vote_record_for(state.proposal_id, voter_record)
        except DaoRadarError as e:
            logger.warning(f"[VotePipeline] Keeping optimistic vote on {state.proposal_id}, read-back failed: {e.message}")
            return state
        if record is None:
            logger.warning(f"[VotePipeline] Keeping optimistic vote on {state.proposal_id}, record not visible yet")
            return state
        return replace(state, source=VoteSource.CHAIN, vote_record=record)
