"""
Seen-proposal tracking and new-proposal alerts.

The seen set is a bounded, insertion-ordered list of proposal ids kept in a
LocalStore. ``diff`` reports the proposals of a batch that are not in the set
yet, then merges the whole batch into the set and drops the oldest ids above
the limit.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from dao_radar.config import common_settings
from dao_radar.data_models.governance_schemas import ActiveProposalAlert
from dao_radar.services.local_store import LocalStore
from dao_radar.utils.logger import logger

SEEN_PROPOSALS_KEY = "dao-radar-seen-proposals"
MULTI_ALERT_PREVIEW = 3


class AlertSink(ABC):
    @abstractmethod
    def emit(self, title: str, body: str, tag: str) -> None:
        ...


class LoggingAlertSink(AlertSink):
    def emit(self, title: str, body: str, tag: str) -> None:
        logger.info(f"[Notifications] {title} | {body.replace(chr(10), ' / ')} ({tag})")


def format_alert(new_items: Sequence[ActiveProposalAlert]):
    """Title, body and tag for one alert covering ``new_items``."""
    if len(new_items) == 1:
        item = new_items[0]
        return f"New proposal in {item.dao_name}", item.proposal_name, f"dao-radar-{item.proposal_id}"
    body = "\n".join(f"{p.dao_name}: {p.proposal_name}" for p in new_items[:MULTI_ALERT_PREVIEW])
    return f"{len(new_items)} new active proposals", body, "dao-radar-batch"


class NotificationTracker:
    def __init__(
        self,
        store: LocalStore,
        sink: Optional[AlertSink] = None,
        limit: Optional[int] = None,
        namespace: Optional[str] = None,
    ):
        self.store = store
        self.sink = sink if sink is not None else LoggingAlertSink()
        self.limit = limit or common_settings.SEEN_PROPOSALS_LIMIT
        self.key = f"{SEEN_PROPOSALS_KEY}:{namespace}" if namespace else SEEN_PROPOSALS_KEY

    def seen_ids(self) -> List[str]:
        stored = self.store.read(self.key)
        if not isinstance(stored, list):
            return []
        return [str(item) for item in stored]

    def diff(self, current_active: Sequence[ActiveProposalAlert]) -> List[ActiveProposalAlert]:
        """
        Return the items of ``current_active`` whose ids were not seen before.

        Every id in the batch is recorded as seen afterwards, so a second call
        with the same batch returns an empty list.
        """
        seen = self.seen_ids()
        seen_set = set(seen)

        new_items: List[ActiveProposalAlert] = []
        batch_ids: List[str] = []
        for item in current_active:
            if item.proposal_id in batch_ids:
                continue
            batch_ids.append(item.proposal_id)
            if item.proposal_id not in seen_set:
                new_items.append(item)

        # Ids of the current batch become the most recent entries
        batch_set = set(batch_ids)
        merged = [pid for pid in seen if pid not in batch_set] + batch_ids
        merged = merged[-self.limit:]
        if merged != seen:
            self.store.write(self.key, merged)

        if new_items:
            title, body, tag = format_alert(new_items)
            self.sink.emit(title, body, tag)
            logger.info(f"[Notifications] {len(new_items)} new of {len(current_active)} active proposals")
        return new_items
