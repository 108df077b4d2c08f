"""Seen-set diffing and alert formatting."""
from unittest.mock import MagicMock

import pytest

from ..local_store import MemoryStore
from ..notification_tracker import SEEN_PROPOSALS_KEY, AlertSink, NotificationTracker, format_alert
from ...data_models.governance_schemas import ActiveProposalAlert


def alert(pid: str, dao: str = "Mango DAO", name: str = None) -> ActiveProposalAlert:
    return ActiveProposalAlert(proposal_id=pid, proposal_name=name or f"Proposal {pid}", dao_name=dao)


@pytest.fixture
def sink():
    return MagicMock(spec=AlertSink)


@pytest.fixture
def store():
    return MemoryStore()


class TestDiff:
    def test_first_pass_reports_everything(self, store, sink):
        tracker = NotificationTracker(store, sink=sink, limit=10)
        new = tracker.diff([alert("a"), alert("b")])
        assert [n.proposal_id for n in new] == ["a", "b"]
        assert tracker.seen_ids() == ["a", "b"]

    def test_second_pass_is_empty(self, store, sink):
        """Diffing the same batch twice reports nothing the second time."""
        tracker = NotificationTracker(store, sink=sink, limit=10)
        batch = [alert("a"), alert("b")]
        tracker.diff(batch)
        sink.reset_mock()

        assert tracker.diff(batch) == []
        sink.emit.assert_not_called()

    def test_only_unseen_are_new(self, store, sink):
        tracker = NotificationTracker(store, sink=sink, limit=10)
        tracker.diff([alert("a")])
        new = tracker.diff([alert("a"), alert("c")])
        assert [n.proposal_id for n in new] == ["c"]

    def test_bounded_and_keeps_newest(self, store, sink):
        tracker = NotificationTracker(store, sink=sink, limit=3)
        tracker.diff([alert("a"), alert("b")])
        tracker.diff([alert("c"), alert("d")])
        assert tracker.seen_ids() == ["b", "c", "d"]

    def test_reseen_ids_move_to_recent_end(self, store, sink):
        tracker = NotificationTracker(store, sink=sink, limit=3)
        tracker.diff([alert("a"), alert("b"), alert("c")])
        tracker.diff([alert("a"), alert("d")])
        assert tracker.seen_ids() == ["c", "a", "d"]

    def test_duplicates_in_batch(self, store, sink):
        tracker = NotificationTracker(store, sink=sink, limit=10)
        new = tracker.diff([alert("a"), alert("a")])
        assert len(new) == 1
        assert tracker.seen_ids() == ["a"]

    def test_namespaces_are_separate(self, store, sink):
        first = NotificationTracker(store, sink=sink, namespace="wallet-1")
        second = NotificationTracker(store, sink=sink, namespace="wallet-2")
        first.diff([alert("a")])
        assert second.diff([alert("a")]) != []
        assert first.key == f"{SEEN_PROPOSALS_KEY}:wallet-1"

    def test_corrupt_value_is_treated_as_empty(self, store, sink):
        store.write(SEEN_PROPOSALS_KEY, {"not": "a list"})
        tracker = NotificationTracker(store, sink=sink)
        assert tracker.seen_ids() == []
        assert len(tracker.diff([alert("a")])) == 1


class TestFormatAlert:
    def test_single(self):
        title, body, tag = format_alert([alert("abc", dao="Pyth DAO", name="Raise fees")])
        assert title == "New proposal in Pyth DAO"
        assert body == "Raise fees"
        assert tag == "dao-radar-abc"

    def test_batch_previews_three(self):
        items = [alert(str(i), dao=f"DAO {i}", name=f"P{i}") for i in range(5)]
        title, body, tag = format_alert(items)
        assert title == "5 new active proposals"
        assert body.splitlines() == ["DAO 0: P0", "DAO 1: P1", "DAO 2: P2"]
        assert tag == "dao-radar-batch"

    def test_sink_receives_one_alert_per_diff(self, store, sink):
        NotificationTracker(store, sink=sink).diff([alert("x"), alert("y")])
        sink.emit.assert_called_once_with("2 new active proposals", "Mango DAO: Proposal x\nMango DAO: Proposal y", "dao-radar-batch")
