from __future__ import annotations

from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


class BaseSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class RoundFlags(BaseSchema):
    round64: bool = False
    round32: bool = False
    sweet16: bool = False
    elite8: bool = False
    final4: bool = False
    championship: bool = False


class TeamSlim(BaseSchema):
    id: int
    name: str
    region: str
    seed: int


class OwnerSlim(BaseSchema):
    id: int
    name: str
    paid: bool = False
    paid_out: bool = Field(default=False, alias="paidOut")


class OwnedTeamOut(TeamSlim, RoundFlags):
    owner_id: Optional[int] = Field(default=None, alias="ownerId")
    cost: float = 0


class TeamOut(OwnedTeamOut):
    owner: Optional[OwnerSlim] = None


class TeamCreate(BaseSchema):
    name: str
    region: str
    seed: int = Field(..., ge=1, le=16)
    owner_id: Optional[int] = Field(default=None, alias="ownerId")
    cost: float = 0


class TeamUpdate(BaseSchema):
    owner_id: Optional[int] = Field(default=None, alias="ownerId")
    cost: Optional[float] = None
    round64: Optional[bool] = None
    round32: Optional[bool] = None
    sweet16: Optional[bool] = None
    elite8: Optional[bool] = None
    final4: Optional[bool] = None
    championship: Optional[bool] = None


class OwnerOut(OwnerSlim):
    teams: list[OwnedTeamOut] = []


class OwnerCreate(BaseSchema):
    name: str = Field(..., min_length=1)
    paid: bool = False
    paid_out: bool = Field(default=False, alias="paidOut")


class OwnerUpdate(BaseSchema):
    name: Optional[str] = None
    paid: Optional[bool] = None
    paid_out: Optional[bool] = Field(default=None, alias="paidOut")


class BidOut(BaseSchema):
    bidder: str
    amount: float
    timestamp: int


class AuctionStateOut(BaseSchema):
    is_active: bool = Field(..., alias="isActive")
    current_team_id: Optional[int] = Field(default=None, alias="currentTeamId")
    current_bid: float = Field(..., alias="currentBid")
    current_bidder: Optional[str] = Field(default=None, alias="currentBidder")
    bids: list[BidOut] = []
    last_bid_time: Optional[int] = Field(default=None, alias="lastBidTime")
    expires_at: Optional[int] = Field(default=None, alias="expiresAt")
    version: int
    current_team: Optional[TeamSlim] = Field(default=None, alias="currentTeam")


class AuctionActionRequest(BaseSchema):
    action: str
    bidder: Optional[str] = None
    amount: Optional[float] = None
    team_id: Optional[int] = Field(default=None, alias="teamId")


class AuctionActionResponse(BaseSchema):
    success: bool = True
    state: AuctionStateOut
    remaining_lots: Optional[int] = Field(default=None, alias="remainingLots")
    sold_team_id: Optional[int] = Field(default=None, alias="soldTeamId")
    sold_to: Optional[str] = Field(default=None, alias="soldTo")
    sold_for: Optional[float] = Field(default=None, alias="soldFor")


class ExpireResponse(AuctionActionResponse):
    expired: bool


class RestartResponse(BaseSchema):
    success: bool = True
    message: str


class StatsOut(BaseSchema):
    total_pot: float = Field(..., alias="totalPot")
    payout_per_win: dict[str, float] = Field(..., alias="payoutPerWin")
    percentages: dict[str, str]


class LeaderboardEntry(BaseSchema):
    owner: OwnerSlim
    teams_count: int = Field(..., alias="teamsCount")
    total_investment: float = Field(..., alias="totalInvestment")
    total_payout: float = Field(..., alias="totalPayout")
    roi: float


class CredentialsRequest(BaseSchema):
    username: str
    password: str


class UserOut(BaseSchema):
    id: int
    username: str
    role: str


class AuthResponse(BaseSchema):
    token: str
    user: UserOut


class UserUpdate(BaseSchema):
    username: Optional[str] = None
    password: Optional[str] = None
    role: Optional[Literal["user", "admin"]] = None
