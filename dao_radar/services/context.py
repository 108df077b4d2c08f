"""
Application context.

Owns every long-lived component (RPC connection, registry cache, stores,
aggregator, pipeline) so nothing lives in module globals. One context is
built per process in the FastAPI lifespan; tests build their own with fakes.
"""
from typing import Dict, Optional

from dao_radar.chain.connection import ChainConnection
from dao_radar.chain.program import GovernanceProgramClient, RpcGovernanceProgramClient
from dao_radar.chain.transactions import RpcTransactionSender, TransactionSender
from dao_radar.config import common_settings
from dao_radar.services.browse_cache import BrowseCache
from dao_radar.services.description_fetcher import DescriptionFetcher
from dao_radar.services.governance_aggregator import GovernanceAggregator
from dao_radar.services.local_store import LocalStore, create_local_store
from dao_radar.services.notification_tracker import AlertSink, NotificationTracker
from dao_radar.services.registry_cache import RegistryCache
from dao_radar.services.rpc_proxy import RpcProxy
from dao_radar.services.summarizer import ProposalSummarizer
from dao_radar.services.vote_pipeline import VotePipeline
from dao_radar.utils.logger import logger


class AppContext:
    def __init__(
        self,
        connection: Optional[ChainConnection] = None,
        program: Optional[GovernanceProgramClient] = None,
        sender: Optional[TransactionSender] = None,
        registry: Optional[RegistryCache] = None,
        store: Optional[LocalStore] = None,
        descriptions: Optional[DescriptionFetcher] = None,
        summarizer: Optional[ProposalSummarizer] = None,
        rpc_proxy: Optional[RpcProxy] = None,
        alert_sink: Optional[AlertSink] = None,
        max_trackers: Optional[int] = None,
    ):
        self.connection = connection if connection is not None else ChainConnection()
        self.program = program if program is not None else RpcGovernanceProgramClient(self.connection)
        self.sender = sender if sender is not None else RpcTransactionSender(self.connection)
        self.registry = registry if registry is not None else RegistryCache()
        self.store = store if store is not None else create_local_store(common_settings.LOCAL_STORE_PATH)
        self.descriptions = descriptions if descriptions is not None else DescriptionFetcher()
        self.summarizer = summarizer if summarizer is not None else ProposalSummarizer()
        self.rpc_proxy = rpc_proxy if rpc_proxy is not None else RpcProxy()
        self.alert_sink = alert_sink

        self.aggregator = GovernanceAggregator(self.program)
        self.browse = BrowseCache(self.aggregator, self.store)
        self.votes = VotePipeline(self.aggregator, self.sender)
        self._trackers: Dict[str, NotificationTracker] = {}
        self.max_trackers = max_trackers if max_trackers is not None else common_settings.ALERT_TRACKER_MAX_WALLETS

    def tracker_for(self, wallet: str) -> NotificationTracker:
        """
        Seen-set tracker scoped to one wallet.

        Trackers are kept for the most recently used wallets only; the seen
        sets themselves live in the store, so a dropped tracker is rebuilt
        with its history intact.
        """
        tracker = self._trackers.pop(wallet, None)
        if tracker is None:
            tracker = NotificationTracker(self.store, sink=self.alert_sink, namespace=wallet)
        self._trackers[wallet] = tracker
        while len(self._trackers) > self.max_trackers:
            del self._trackers[next(iter(self._trackers))]
        return tracker

    async def aclose(self) -> None:
        logger.info("[AppContext] Closing resources")
        await self.registry.aclose()
        await self.descriptions.aclose()
        await self.rpc_proxy.aclose()
        await self.connection.close()
