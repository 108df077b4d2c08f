from typing import List, Optional

from fastapi import Depends, Query

from dao_radar.data_models.api_schemas import RealmPageResponse
from dao_radar.data_models.governance_schemas import DaoView, Proposal, ProposalSummary, TokenOwnerRecord
from dao_radar.routers.deps import get_app_context
from dao_radar.routers.routes_wallets import enrich_with_registry
from dao_radar.services.context import AppContext
from dao_radar.services.governance_aggregator import ACTIVE_PROPOSAL_LIST_LIMIT


async def get_featured_daos(ctx: AppContext = Depends(get_app_context)) -> List[DaoView]:
    views = await ctx.browse.get()
    return await enrich_with_registry(ctx, views)


async def browse_daos(
    search: str = Query("", max_length=200),
    page: int = Query(0, ge=0),
    page_size: int = Query(50, ge=1, le=200),
    ctx: AppContext = Depends(get_app_context),
) -> RealmPageResponse:
    result = await ctx.browse.get_all_realms(search=search, page=page, page_size=page_size)
    return RealmPageResponse(
        items=result.items,
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


async def get_dao(realm_id: str, ctx: AppContext = Depends(get_app_context)) -> DaoView:
    realm = await ctx.aggregator.get_organization(realm_id)
    proposals = await ctx.aggregator.get_organization_proposals(realm_id)
    active = [p for p in proposals if p.is_voting]
    view = DaoView(
        realm_id=realm.pubkey,
        name=realm.name,
        realm=realm,
        active_proposals=len(active),
        active_proposal_list=[ProposalSummary.from_proposal(p) for p in active[:ACTIVE_PROPOSAL_LIST_LIMIT]],
    )
    return (await enrich_with_registry(ctx, [view]))[0]


async def get_dao_proposals(
    realm_id: str,
    program_id: Optional[str] = Query(None),
    ctx: AppContext = Depends(get_app_context),
) -> List[Proposal]:
    return await ctx.aggregator.get_organization_proposals(realm_id, program_id=program_id)


async def get_dao_voter_record(
    realm_id: str,
    mint: str = Query(...),
    wallet: str = Query(...),
    ctx: AppContext = Depends(get_app_context),
) -> Optional[TokenOwnerRecord]:
    return await ctx.aggregator.get_voter_record(realm_id, mint, wallet)
