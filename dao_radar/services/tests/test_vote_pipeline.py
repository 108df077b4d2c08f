"""Vote pipeline state machine tests."""
import asyncio

import pytest
from solders.keypair import Keypair
from solders.transaction import Transaction

from .fakes import FakeProgramClient, FakeSender, PROGRAM_ID, make_proposal, make_realm, make_record, make_vote_record
from ..governance_aggregator import GovernanceAggregator
from ..vote_pipeline import (
    KeypairSigner,
    VotePhase,
    VotePipeline,
    VoteSource,
    VoteState,
    VoteStateStore,
    classify_submission_error,
)
from ...chain.addresses import token_owner_record_address, vote_record_address
from ...chain.tests.account_builders import instruction_choice
from ...data_models.governance_schemas import ProposalState, VoteChoice, VoteKind
from ...exceptions import RateLimitError, UpstreamError, UpstreamTimeoutError, VoteInProgressError


class RejectingSigner(KeypairSigner):
    async def sign_transaction(self, transaction: Transaction) -> Transaction:
        raise RuntimeError("User rejected the request.")


class HangingSigner(KeypairSigner):
    async def sign_transaction(self, transaction: Transaction) -> Transaction:
        await asyncio.sleep(10)
        return transaction


@pytest.fixture
def program():
    return FakeProgramClient()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def pipeline(program, sender):
    aggregator = GovernanceAggregator(program, program_id=PROGRAM_ID, max_retries=0)
    return VotePipeline(aggregator, sender, sign_timeout=5)


@pytest.fixture
def signer():
    return KeypairSigner(Keypair())


@pytest.fixture
def setup(program, signer):
    """A realm with one Voting proposal and the signer's deposit record for its mint."""
    wallet = str(signer.public_key)
    proposal = make_proposal("Raise fees", state=ProposalState.VOTING, voting_at=10)
    realm = program.add_realm(make_realm("Voters"), [[proposal]])
    record = make_record(realm.pubkey, wallet, 100, mint=proposal.governing_token_mint)
    address = token_owner_record_address(PROGRAM_ID, realm.pubkey, proposal.governing_token_mint, wallet)
    program.records_by_address[str(address)] = record
    return realm, proposal, record


class TestVoteStateStore:
    def test_subscribe_and_unsubscribe(self):
        store = VoteStateStore()
        events = []
        unsubscribe = store.subscribe(lambda key, state: events.append((key, state)))
        pipeline = VotePipeline(aggregator=None, sender=None, store=store)

        state = pipeline.begin("p", "w", VoteChoice.DENY)
        store.remove("p", "w")
        unsubscribe()
        store.set(state)

        assert [s.phase if s else None for _, s in events] == [VotePhase.OPTIMISTIC, None]

    def test_broken_listener_does_not_block_others(self):
        store = VoteStateStore()
        seen = []

        def broken(key, state):
            raise ValueError("listener bug")

        store.subscribe(broken)
        store.subscribe(lambda key, state: seen.append(key))
        VotePipeline(aggregator=None, sender=None, store=store).begin("p", "w", VoteChoice.APPROVE)

        assert seen == [("p", "w")]

    def test_injected_empty_store_is_used(self):
        store = VoteStateStore()
        assert len(store) == 0

        pipeline = VotePipeline(aggregator=None, sender=None, store=store)

        assert pipeline.store is store

    def test_settled_votes_are_evicted_first(self):
        store = VoteStateStore(max_entries=2)
        events = []
        store.subscribe(lambda key, state: events.append((key, state)))
        pending = VoteState("p2", "w", VoteChoice.APPROVE, VotePhase.OPTIMISTIC)

        store.set(VoteState("p1", "w", VoteChoice.APPROVE, VotePhase.CONFIRMED))
        store.set(pending)
        store.set(VoteState("p3", "w", VoteChoice.DENY, VotePhase.CONFIRMED))

        assert len(store) == 2
        assert store.get("p1", "w") is None
        assert store.get("p2", "w") == pending
        assert (("p1", "w"), None) in events

    def test_pending_votes_are_never_evicted(self):
        store = VoteStateStore(max_entries=1)
        store.set(VoteState("p1", "w", VoteChoice.APPROVE, VotePhase.OPTIMISTIC))
        store.set(VoteState("p2", "w", VoteChoice.APPROVE, VotePhase.SUBMITTING))
        assert len(store) == 2


class TestBegin:
    def test_optimistic_state_is_immediate(self, pipeline):
        state = pipeline.begin("proposal", "wallet", VoteChoice.APPROVE)
        assert state.phase == VotePhase.OPTIMISTIC
        assert pipeline.store.get("proposal", "wallet") == state

    def test_second_pending_vote_is_refused(self, pipeline):
        pipeline.begin("proposal", "wallet", VoteChoice.APPROVE)
        with pytest.raises(VoteInProgressError):
            pipeline.begin("proposal", "wallet", VoteChoice.DENY)

    def test_other_wallets_are_independent(self, pipeline):
        pipeline.begin("proposal", "wallet-a", VoteChoice.APPROVE)
        pipeline.begin("proposal", "wallet-b", VoteChoice.APPROVE)
        assert len(pipeline.store) == 2


class TestCastVote:
    @pytest.mark.asyncio
    async def test_confirmed_from_chain(self, pipeline, program, sender, signer, setup):
        realm, proposal, record = setup
        wallet = str(signer.public_key)
        chain_record = make_vote_record(proposal.pubkey, wallet, VoteKind.DENY, weight=100)
        program.vote_records_by_address[str(vote_record_address(PROGRAM_ID, proposal.pubkey, record.pubkey))] = chain_record
        phases = []
        pipeline.store.subscribe(lambda key, state: phases.append(state.phase if state else None))

        result = await pipeline.cast_vote(realm.pubkey, proposal.pubkey, signer, VoteChoice.DENY)

        assert result.ok
        assert phases == [VotePhase.OPTIMISTIC, VotePhase.SUBMITTING, VotePhase.CONFIRMED]
        assert result.state.source == VoteSource.CHAIN
        assert result.state.vote_record == chain_record
        assert sender.confirmed == [result.signature]

        sent = Transaction.from_bytes(sender.sent[0])
        assert sent.message.account_keys[0] == signer.public_key
        assert instruction_choice(bytes(sent.message.instructions[0].data)) == VoteKind.DENY

    @pytest.mark.asyncio
    async def test_read_back_miss_keeps_local_state(self, pipeline, signer, setup):
        realm, proposal, _ = setup

        result = await pipeline.cast_vote(realm.pubkey, proposal.pubkey, signer, VoteChoice.APPROVE)

        assert result.phase == VotePhase.CONFIRMED
        assert result.state.source == VoteSource.LOCAL
        assert pipeline.store.get(proposal.pubkey, str(signer.public_key)).is_confirmed

    @pytest.mark.asyncio
    async def test_confirm_timeout_resets_to_idle(self, pipeline, sender, signer, setup):
        realm, proposal, _ = setup
        sender.confirm_error = UpstreamTimeoutError("confirmTransaction timed out after 60s")

        result = await pipeline.cast_vote(realm.pubkey, proposal.pubkey, signer, VoteChoice.APPROVE)

        assert result.phase == VotePhase.FAILED
        assert result.error.category == "timeout"
        assert result.error.retryable
        assert pipeline.store.get(proposal.pubkey, str(signer.public_key)) is None

    @pytest.mark.asyncio
    async def test_broadcast_failure_rolls_back(self, pipeline, sender, signer, setup):
        realm, proposal, _ = setup
        sender.send_error = UpstreamError("Connection error: reset by peer")

        result = await pipeline.cast_vote(realm.pubkey, proposal.pubkey, signer, VoteChoice.APPROVE)

        assert result.phase == VotePhase.FAILED
        assert result.error.category == "network"
        assert pipeline.store.get(proposal.pubkey, str(signer.public_key)) is None

    @pytest.mark.asyncio
    async def test_wallet_without_deposit(self, pipeline, sender, setup):
        realm, proposal, record = setup
        signer = RejectingSigner(Keypair())

        result = await pipeline.cast_vote(realm.pubkey, proposal.pubkey, signer, VoteChoice.APPROVE)

        # A fresh keypair has no deposit record, so the pipeline stops before signing
        assert result.error.category == "no_voting_power"
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_signer_rejection_after_checks(self, program, pipeline, sender, setup):
        realm, proposal, record = setup
        signer = RejectingSigner(Keypair())
        wallet = str(signer.public_key)
        address = token_owner_record_address(PROGRAM_ID, realm.pubkey, proposal.governing_token_mint, wallet)
        program.records_by_address[str(address)] = make_record(realm.pubkey, wallet, 5, mint=proposal.governing_token_mint)

        result = await pipeline.cast_vote(realm.pubkey, proposal.pubkey, signer, VoteChoice.APPROVE)

        assert result.error.category == "rejected"
        assert sender.sent == []
        assert pipeline.store.get(proposal.pubkey, wallet) is None

    @pytest.mark.asyncio
    async def test_closed_proposal(self, program, pipeline, signer):
        proposal = make_proposal("Old", state=ProposalState.DEFEATED)
        realm = program.add_realm(make_realm("R"), [[proposal]])

        result = await pipeline.cast_vote(realm.pubkey, proposal.pubkey, signer, VoteChoice.APPROVE)

        assert result.error.category == "proposal_closed"
        assert not result.error.retryable

    @pytest.mark.asyncio
    async def test_already_confirmed(self, pipeline, sender, signer, setup):
        realm, proposal, _ = setup
        first = await pipeline.cast_vote(realm.pubkey, proposal.pubkey, signer, VoteChoice.APPROVE)

        second = await pipeline.cast_vote(realm.pubkey, proposal.pubkey, signer, VoteChoice.DENY)

        assert first.ok
        assert second.error.category == "already_voted"
        assert len(sender.sent) == 1
        assert pipeline.store.get(proposal.pubkey, str(signer.public_key)).choice == VoteChoice.APPROVE

    @pytest.mark.asyncio
    async def test_cancellation_clears_state(self, pipeline, program, setup):
        realm, proposal, _ = setup
        signer = HangingSigner(Keypair())
        wallet = str(signer.public_key)
        address = token_owner_record_address(PROGRAM_ID, realm.pubkey, proposal.governing_token_mint, wallet)
        program.records_by_address[str(address)] = make_record(realm.pubkey, wallet, 5, mint=proposal.governing_token_mint)

        task = asyncio.create_task(pipeline.cast_vote(realm.pubkey, proposal.pubkey, signer, VoteChoice.APPROVE))
        await asyncio.sleep(0.05)
        assert pipeline.store.get(proposal.pubkey, wallet).phase == VotePhase.SUBMITTING
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert pipeline.store.get(proposal.pubkey, wallet) is None

    @pytest.mark.asyncio
    async def test_cancelled_read_back_keeps_confirmed_vote(self, pipeline, program, sender, signer, setup):
        realm, proposal, _ = setup
        wallet = str(signer.public_key)
        reached = asyncio.Event()

        async def hanging_read(address):
            reached.set()
            await asyncio.sleep(10)

        program.get_vote_record = hanging_read
        task = asyncio.create_task(pipeline.cast_vote(realm.pubkey, proposal.pubkey, signer, VoteChoice.APPROVE))
        await asyncio.wait_for(reached.wait(), timeout=1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        state = pipeline.store.get(proposal.pubkey, wallet)
        assert state.phase == VotePhase.CONFIRMED
        assert state.source == VoteSource.LOCAL
        assert state.signature == sender.confirmed[0]

        again = await pipeline.cast_vote(realm.pubkey, proposal.pubkey, signer, VoteChoice.DENY)
        assert again.error.category == "already_voted"


class TestClassifySubmissionError:
    @pytest.mark.parametrize("error, category", [
        (RuntimeError("User rejected the request."), "rejected"),
        (RateLimitError(), "rate_limited"),
        (UpstreamTimeoutError(), "timeout"),
        (RuntimeError("Transaction simulation failed: custom program error: 0x1f7"), "simulation_failed"),
        (RuntimeError("Attempt to debit an account but found no record of a prior credit. insufficient funds"), "insufficient_funds"),
        (RuntimeError("VoteAlreadyExists"), "already_voted"),
        (UpstreamError("Connection error"), "network"),
        (KeyError("weird"), "unknown"),
    ])
    def test_categories(self, error, category):
        assert classify_submission_error(error).category == category

    def test_unknown_keeps_detail(self):
        assert "weird" in classify_submission_error(KeyError("weird")).message
