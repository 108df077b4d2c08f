"""
Pydantic schemas for governance accounts and the views derived from them.

Public keys are carried as base58 strings. Token quantities are carried as
``TokenAmount`` so the exact on-chain value survives until a caller asks for
a plain number.
"""
from enum import Enum, IntEnum
from typing import Annotated, List, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer, WithJsonSchema
from pydantic.alias_generators import to_camel

from dao_radar.utils.numeric import TokenAmount, safe_to_number

Amount = Annotated[
    TokenAmount,
    BeforeValidator(TokenAmount.coerce),
    PlainSerializer(lambda v: v.to_decimal_string(), return_type=str),
    WithJsonSchema({"type": "string", "description": "Decimal integer token amount"}),
]


class GovernanceModel(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)


# ==================
# Enumerations
# ==================

class ProposalState(IntEnum):
    """Proposal lifecycle, in on-chain ordinal order."""
    DRAFT = 0
    SIGNING_OFF = 1
    VOTING = 2
    SUCCEEDED = 3
    EXECUTING = 4
    COMPLETED = 5
    CANCELLED = 6
    DEFEATED = 7
    EXECUTING_WITH_ERRORS = 8
    VETOED = 9

    @property
    def label(self) -> str:
        return _STATE_LABELS[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


_STATE_LABELS = {
    ProposalState.DRAFT: "Draft",
    ProposalState.SIGNING_OFF: "Signing Off",
    ProposalState.VOTING: "Active",
    ProposalState.SUCCEEDED: "Succeeded",
    ProposalState.EXECUTING: "Executing",
    ProposalState.COMPLETED: "Completed",
    ProposalState.CANCELLED: "Cancelled",
    ProposalState.DEFEATED: "Defeated",
    ProposalState.EXECUTING_WITH_ERRORS: "Executing (Errors)",
    ProposalState.VETOED: "Vetoed",
}

TERMINAL_STATES = frozenset({
    ProposalState.COMPLETED,
    ProposalState.CANCELLED,
    ProposalState.DEFEATED,
    ProposalState.VETOED,
})


class VoteKind(IntEnum):
    """Vote variant tag as stored in a vote record."""
    APPROVE = 0
    DENY = 1
    ABSTAIN = 2
    VETO = 3


class VoteChoice(str, Enum):
    """The three choices a user can submit."""
    APPROVE = "approve"
    DENY = "deny"
    ABSTAIN = "abstain"

    @property
    def kind(self) -> VoteKind:
        return {
            VoteChoice.APPROVE: VoteKind.APPROVE,
            VoteChoice.DENY: VoteKind.DENY,
            VoteChoice.ABSTAIN: VoteKind.ABSTAIN,
        }[self]


# ==================
# On-chain Accounts
# ==================

class RealmConfig(GovernanceModel):
    council_mint: Optional[str] = None
    min_community_weight_to_create_governance: Amount = TokenAmount.zero()
    use_community_voter_weight_addin: bool = False
    use_max_community_voter_weight_addin: bool = False


class Realm(GovernanceModel):
    """Organization account."""
    pubkey: str
    account_type: int
    community_mint: str
    config: RealmConfig = RealmConfig()
    authority: Optional[str] = None
    name: str

    @property
    def council_mint(self) -> Optional[str]:
        return self.config.council_mint


class TokenOwnerRecord(GovernanceModel):
    """Deposit record of one wallet for one governing mint in one realm."""
    pubkey: str
    account_type: int
    realm: str
    governing_token_mint: str
    governing_token_owner: str
    governing_token_deposit_amount: Amount
    unrelinquished_votes_count: int = 0
    governance_delegate: Optional[str] = None


class ProposalOption(GovernanceModel):
    label: str = ""
    vote_weight: Amount = TokenAmount.zero()


class Proposal(GovernanceModel):
    pubkey: str
    account_type: int
    governance: str
    governing_token_mint: str
    state: ProposalState
    token_owner_record: str
    name: str = ""
    description_link: str = ""
    options: List[ProposalOption] = Field(default_factory=list)
    deny_vote_weight: Optional[Amount] = None
    abstain_vote_weight: Optional[Amount] = None
    veto_vote_weight: Optional[Amount] = None
    draft_at: int = 0
    signing_off_at: Optional[int] = None
    voting_at: Optional[int] = None
    voting_completed_at: Optional[int] = None
    closed_at: Optional[int] = None
    max_vote_weight: Optional[Amount] = None

    @property
    def is_voting(self) -> bool:
        return self.state == ProposalState.VOTING

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def effective_timestamp(self) -> int:
        """Voting start when present, draft time otherwise."""
        return self.voting_at or self.draft_at

    @property
    def yes_votes(self) -> Union[int, float]:
        if not self.options:
            return 0
        return safe_to_number(self.options[0].vote_weight)

    @property
    def no_votes(self) -> Union[int, float]:
        return safe_to_number(self.deny_vote_weight) if self.deny_vote_weight else 0

    @property
    def abstain_votes(self) -> Union[int, float]:
        return safe_to_number(self.abstain_vote_weight) if self.abstain_vote_weight else 0


class VoteRecord(GovernanceModel):
    pubkey: str
    account_type: int
    proposal: str
    governing_token_owner: str
    is_relinquished: bool = False
    voter_weight: Optional[Amount] = None
    vote_kind: Optional[VoteKind] = None


# ==================
# Derived Views
# ==================

class ProposalSummary(GovernanceModel):
    pubkey: str
    name: str
    state: ProposalState
    effective_timestamp: int

    @classmethod
    def from_proposal(cls, proposal: Proposal) -> "ProposalSummary":
        return cls(
            pubkey=proposal.pubkey,
            name=proposal.name,
            state=proposal.state,
            effective_timestamp=proposal.effective_timestamp,
        )


class RegistryEntry(GovernanceModel):
    """Realm metadata from the public registry list (camelCase on the wire)."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    realm_id: str
    symbol: str = ""
    display_name: str = ""
    og_image: Optional[str] = None
    category: Optional[str] = None
    short_description: Optional[str] = None
    website: Optional[str] = None
    twitter: Optional[str] = None
    discord: Optional[str] = None
    program_id: str = ""


class DaoView(GovernanceModel):
    """
    One realm as seen by one wallet.

    Browse-mode projections are rehydrated with ``is_minimal=True``; on those
    only ``realm_id``, ``name`` and ``active_proposals`` carry data.
    """
    realm_id: str
    name: str
    realm: Optional[Realm] = None
    voting_power: Union[int, float] = 0
    active_proposals: int = 0
    active_proposal_list: List[ProposalSummary] = Field(default_factory=list)
    token_owner_record: Optional[TokenOwnerRecord] = None
    registry: Optional[RegistryEntry] = None
    is_minimal: bool = False


class BrowseDaoSummary(GovernanceModel):
    """Minimal projection persisted by the browse-mode cache."""
    id: str
    name: str
    count: int = 0


class ActiveProposalAlert(GovernanceModel):
    proposal_id: str
    proposal_name: str
    dao_name: str
    realm_id: str = ""


class VoteHistoryItem(GovernanceModel):
    vote_record: VoteRecord
    proposal: Optional[Proposal] = None
