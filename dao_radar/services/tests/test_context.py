"""Application context wiring and per-wallet trackers."""
from unittest.mock import MagicMock

import pytest

from .fakes import FakeProgramClient, FakeSender
from ..context import AppContext
from ..local_store import MemoryStore
from ..notification_tracker import AlertSink
from ..vote_pipeline import VoteStateStore
from ...data_models.governance_schemas import ActiveProposalAlert


@pytest.fixture
def make_context():
    def build(**overrides):
        parts = dict(
            program=FakeProgramClient(),
            sender=FakeSender(),
            registry=MagicMock(),
            store=MemoryStore(),
            descriptions=MagicMock(),
            summarizer=MagicMock(),
            rpc_proxy=MagicMock(),
            alert_sink=MagicMock(spec=AlertSink),
        )
        parts.update(overrides)
        return AppContext(**parts)

    return build


class TestWiring:
    def test_injected_empty_store_is_used(self, make_context):
        store = MemoryStore()
        context = make_context(store=store)
        assert context.store is store
        assert context.browse.store is store

    def test_vote_pipeline_store_is_observable(self, make_context):
        context = make_context()
        assert isinstance(context.votes.store, VoteStateStore)


class TestTrackerFor:
    def test_same_wallet_reuses_tracker(self, make_context):
        context = make_context()
        assert context.tracker_for("wallet-a") is context.tracker_for("wallet-a")

    def test_least_recently_used_wallet_is_dropped(self, make_context):
        context = make_context(max_trackers=2)
        context.tracker_for("a")
        context.tracker_for("b")
        context.tracker_for("a")
        context.tracker_for("c")

        assert set(context._trackers) == {"a", "c"}

    def test_rebuilt_tracker_keeps_seen_ids(self, make_context):
        context = make_context(max_trackers=1)
        batch = [ActiveProposalAlert(proposal_id="p1", proposal_name="Raise fees", dao_name="Mango DAO")]
        first = context.tracker_for("a")
        assert len(first.diff(batch)) == 1

        context.tracker_for("b")
        rebuilt = context.tracker_for("a")

        assert rebuilt is not first
        assert rebuilt.diff(batch) == []
