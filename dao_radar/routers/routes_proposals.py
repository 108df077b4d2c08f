from fastapi import Depends, Query

from dao_radar.data_models.api_schemas import ProposalDetailResponse, VoteRecordResponse
from dao_radar.routers.deps import get_app_context
from dao_radar.services.context import AppContext


async def get_proposal_detail(proposal_id: str, ctx: AppContext = Depends(get_app_context)) -> ProposalDetailResponse:
    """One proposal with its resolved description and plain-number tallies."""
    proposal = await ctx.aggregator.get_proposal(proposal_id)
    description = await ctx.descriptions.fetch(proposal.description_link)
    return ProposalDetailResponse(
        proposal=proposal,
        description=description,
        state_label=proposal.state.label,
        yes_votes=proposal.yes_votes,
        no_votes=proposal.no_votes,
        abstain_votes=proposal.abstain_votes,
    )


async def get_proposal_vote_record(
    proposal_id: str,
    voter_record: str = Query(..., description="Token owner record of the voter"),
    ctx: AppContext = Depends(get_app_context),
) -> VoteRecordResponse:
    record = await ctx.aggregator.get_vote_record_for(proposal_id, voter_record)
    return VoteRecordResponse(vote_record=record)
