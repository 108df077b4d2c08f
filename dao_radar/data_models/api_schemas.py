from typing import List, Optional

from pydantic import BaseModel

from dao_radar.data_models.governance_schemas import (
    ActiveProposalAlert,
    BrowseDaoSummary,
    DaoView,
    Proposal,
    VoteRecord,
)


class SummarizeRequest(BaseModel):
    title: Optional[str] = ""
    description: Optional[str] = ""


class SummarizeResponse(BaseModel):
    summary: str
    impact: str


class WalletDaosResponse(BaseModel):
    wallet: str
    daos: List[DaoView]
    # True when the wallet has no deposits and featured realms are returned instead
    featured: bool = False


class AlertsRequest(BaseModel):
    # When omitted, the wallet's active proposals are aggregated server-side
    active: Optional[List[ActiveProposalAlert]] = None


class AlertsResponse(BaseModel):
    new: List[ActiveProposalAlert]
    active: List[ActiveProposalAlert]


class RealmPageResponse(BaseModel):
    items: List[BrowseDaoSummary]
    total: int
    page: int
    page_size: int
    total_pages: int


class ProposalDetailResponse(BaseModel):
    proposal: Proposal
    description: str
    state_label: str
    yes_votes: float
    no_votes: float
    abstain_votes: float


class VoteRecordResponse(BaseModel):
    vote_record: Optional[VoteRecord] = None
