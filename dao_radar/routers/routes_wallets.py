from typing import List, Optional

from fastapi import Body, Depends, Query

from dao_radar.chain.addresses import parse_pubkey
from dao_radar.data_models.api_schemas import AlertsRequest, AlertsResponse, WalletDaosResponse
from dao_radar.data_models.governance_schemas import DaoView, VoteHistoryItem
from dao_radar.exceptions import DaoRadarError
from dao_radar.routers.deps import get_app_context
from dao_radar.services.context import AppContext
from dao_radar.utils.logger import logger


async def enrich_with_registry(ctx: AppContext, views: List[DaoView]) -> List[DaoView]:
    """Attach registry metadata; a registry outage leaves the views unchanged."""
    try:
        registry = await ctx.registry.get_map()
    except DaoRadarError as e:
        logger.warning(f"[Routes] Registry unavailable, serving views without metadata: {e.message}")
        return views
    return [
        view.model_copy(update={"registry": registry[view.realm_id]}) if view.realm_id in registry else view
        for view in views
    ]


async def get_wallet_daos(wallet: str, ctx: AppContext = Depends(get_app_context)) -> WalletDaosResponse:
    """Realms the wallet has deposited into; featured realms when it has none."""
    views = await ctx.aggregator.get_user_organizations(wallet)
    featured = False
    if not views:
        views = await ctx.browse.get()
        featured = True
    views = await enrich_with_registry(ctx, views)
    return WalletDaosResponse(wallet=wallet, daos=views, featured=featured)


async def get_wallet_votes(
    wallet: str,
    limit: int = Query(20, ge=1, le=100),
    ctx: AppContext = Depends(get_app_context),
) -> List[VoteHistoryItem]:
    return await ctx.aggregator.get_user_vote_history(wallet, limit=limit)


async def post_wallet_alerts(
    wallet: str,
    request: Optional[AlertsRequest] = Body(None),
    ctx: AppContext = Depends(get_app_context),
) -> AlertsResponse:
    """
    Diff the wallet's active proposals against its seen set.

    Clients that already hold the active list send it in the body; otherwise
    it is aggregated here.
    """
    parse_pubkey(wallet, "wallet")
    if request is not None and request.active is not None:
        active = request.active
    else:
        views = await ctx.aggregator.get_user_organizations(wallet)
        active = await ctx.aggregator.collect_active_alerts(views)
    new_items = ctx.tracker_for(wallet).diff(active)
    return AlertsResponse(new=new_items, active=active)
