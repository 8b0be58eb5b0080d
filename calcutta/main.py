from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import payouts
from .auth import (
    Identity,
    get_current_user,
    hash_password,
    issue_session,
    require_admin,
    revoke_sessions,
    verify_password,
)
from .config import ALLOWED_ORIGINS, EXPIRY_SWEEP_SECONDS, configure_logging
from .db import Base, engine, get_db
from .engine import ActionResult, AuctionEngine, to_millis
from .errors import AuctionError
from .models import AuctionState, Owner, Team, User, utcnow
from .schemas import (
    AuctionActionRequest,
    AuctionActionResponse,
    AuctionStateOut,
    AuthResponse,
    BidOut,
    CredentialsRequest,
    ExpireResponse,
    LeaderboardEntry,
    OwnerCreate,
    OwnerOut,
    OwnerSlim,
    OwnerUpdate,
    RestartResponse,
    StatsOut,
    TeamCreate,
    TeamOut,
    TeamSlim,
    TeamUpdate,
    UserOut,
    UserUpdate,
)
from .sweeper import ExpirySweeper

logger = logging.getLogger(__name__)

# Bidders settle lots through /auction/expire, which checks the countdown deadline.
ADMIN_ACTIONS = {"start", "next", "sold", "stop", "resume"}

app = FastAPI(title="Calcutta Auction API", version="0.1.0")
sweeper = ExpirySweeper()

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AuctionError)
async def auction_error_handler(request: Request, exc: AuctionError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Storage failure on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal storage error"})


def _state_to_out(auction: AuctionEngine, state: AuctionState) -> AuctionStateOut:
    team = state.current_team
    return AuctionStateOut(
        is_active=state.is_active,
        current_team_id=state.current_team_id,
        current_bid=state.current_bid,
        current_bidder=state.current_bidder,
        bids=[BidOut(**bid) for bid in state.bids or []],
        last_bid_time=to_millis(state.last_bid_time),
        expires_at=to_millis(auction.deadline(state)),
        version=state.version,
        current_team=TeamSlim.model_validate(team) if team else None,
    )


def _user_to_out(user: User) -> UserOut:
    return UserOut(id=user.id, username=user.username, role=user.role)


def _get_team_or_404(db: Session, team_id: int) -> Team:
    team = db.get(Team, team_id)
    if not team:
        raise HTTPException(status_code=404, detail="Team not found")
    return team


def _get_owner_or_404(db: Session, owner_id: int) -> Owner:
    owner = db.get(Owner, owner_id)
    if not owner:
        raise HTTPException(status_code=404, detail="Owner not found")
    return owner


def _commit_or_conflict(db: Session, detail: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail=detail)


@app.on_event("startup")
def on_startup() -> None:
    configure_logging()
    Base.metadata.create_all(bind=engine)
    if EXPIRY_SWEEP_SECONDS > 0:
        sweeper.start()


@app.on_event("shutdown")
def on_shutdown() -> None:
    sweeper.stop()


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "time": utcnow().isoformat()}


# -- identity ------------------------------------------------------------------


@app.post("/auth/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def signup(payload: CredentialsRequest, db: Session = Depends(get_db)) -> AuthResponse:
    username = payload.username.strip()
    if len(username) < 3:
        raise HTTPException(status_code=400, detail="Username must be at least 3 characters")
    if len(payload.password) < 6:
        raise HTTPException(status_code=400, detail="Password must be at least 6 characters")
    if db.scalars(select(User).where(User.username == username)).first():
        raise HTTPException(status_code=409, detail="Username already taken")
    user = User(username=username, password_hash=hash_password(payload.password), role="user")
    db.add(user)
    _commit_or_conflict(db, "Username already taken")
    db.refresh(user)
    logger.info("Signed up %s", user.username)
    return AuthResponse(token=issue_session(db, user), user=_user_to_out(user))


@app.post("/auth/login", response_model=AuthResponse)
def login(payload: CredentialsRequest, db: Session = Depends(get_db)) -> AuthResponse:
    user = db.scalars(select(User).where(User.username == payload.username.strip())).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return AuthResponse(token=issue_session(db, user), user=_user_to_out(user))


@app.get("/auth/me", response_model=UserOut)
def me(identity: Identity = Depends(get_current_user)) -> UserOut:
    return UserOut(id=identity.user_id, username=identity.username, role=identity.role)


@app.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    identity: Identity = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    revoke_sessions(db, identity.user_id)
    db.commit()


@app.get("/admin/users", response_model=list[UserOut])
def list_users(
    db: Session = Depends(get_db),
    admin: Identity = Depends(require_admin),
) -> list[UserOut]:
    users = db.scalars(select(User).order_by(User.username)).all()
    return [_user_to_out(user) for user in users]


@app.patch("/admin/users/{user_id}", response_model=UserOut)
def update_user(
    user_id: int,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    admin: Identity = Depends(require_admin),
) -> UserOut:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if payload.username:
        taken = db.scalars(
            select(User).where(User.username == payload.username, User.id != user_id)
        ).first()
        if taken:
            raise HTTPException(status_code=409, detail="Username already taken")
        user.username = payload.username
    if payload.password:
        user.password_hash = hash_password(payload.password)
    if payload.role:
        user.role = payload.role
    _commit_or_conflict(db, "Username already taken")
    db.refresh(user)
    return _user_to_out(user)


@app.delete("/admin/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin: Identity = Depends(require_admin),
):
    if admin.user_id == user_id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    revoke_sessions(db, user_id)
    db.delete(user)
    db.commit()


# -- catalog -------------------------------------------------------------------


@app.get("/teams", response_model=list[TeamOut])
def list_teams(db: Session = Depends(get_db)) -> list[TeamOut]:
    teams = db.scalars(select(Team).order_by(Team.region, Team.seed)).all()
    return [TeamOut.model_validate(team) for team in teams]


@app.get("/teams/{team_id}", response_model=TeamOut)
def get_team(team_id: int, db: Session = Depends(get_db)) -> TeamOut:
    return TeamOut.model_validate(_get_team_or_404(db, team_id))


@app.post("/teams", response_model=TeamOut, status_code=status.HTTP_201_CREATED)
def create_team(
    payload: TeamCreate,
    db: Session = Depends(get_db),
    admin: Identity = Depends(require_admin),
) -> TeamOut:
    if payload.owner_id is not None:
        _get_owner_or_404(db, payload.owner_id)
    team = Team(
        name=payload.name,
        region=payload.region,
        seed=payload.seed,
        owner_id=payload.owner_id,
        cost=payload.cost,
    )
    db.add(team)
    db.commit()
    db.refresh(team)
    return TeamOut.model_validate(team)


@app.patch("/teams/{team_id}", response_model=TeamOut)
def update_team(
    team_id: int,
    payload: TeamUpdate,
    db: Session = Depends(get_db),
    admin: Identity = Depends(require_admin),
) -> TeamOut:
    team = _get_team_or_404(db, team_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("owner_id") is not None:
        _get_owner_or_404(db, changes["owner_id"])
    for field, value in changes.items():
        if value is None and field != "owner_id":
            continue
        setattr(team, field, value)
    db.commit()
    db.refresh(team)
    return TeamOut.model_validate(team)


@app.get("/owners", response_model=list[OwnerOut])
def list_owners(db: Session = Depends(get_db)) -> list[OwnerOut]:
    owners = db.scalars(select(Owner).order_by(Owner.name)).all()
    return [OwnerOut.model_validate(owner) for owner in owners]


@app.get("/owners/{owner_id}", response_model=OwnerOut)
def get_owner(owner_id: int, db: Session = Depends(get_db)) -> OwnerOut:
    return OwnerOut.model_validate(_get_owner_or_404(db, owner_id))


@app.post("/owners", response_model=OwnerOut, status_code=status.HTTP_201_CREATED)
def create_owner(
    payload: OwnerCreate,
    db: Session = Depends(get_db),
    admin: Identity = Depends(require_admin),
) -> OwnerOut:
    owner = Owner(name=payload.name.strip(), paid=payload.paid, paid_out=payload.paid_out)
    db.add(owner)
    _commit_or_conflict(db, "Owner name already taken")
    db.refresh(owner)
    return OwnerOut.model_validate(owner)


@app.patch("/owners/{owner_id}", response_model=OwnerOut)
def update_owner(
    owner_id: int,
    payload: OwnerUpdate,
    db: Session = Depends(get_db),
    admin: Identity = Depends(require_admin),
) -> OwnerOut:
    owner = _get_owner_or_404(db, owner_id)
    if payload.name is not None:
        owner.name = payload.name.strip()
    if payload.paid is not None:
        owner.paid = payload.paid
    if payload.paid_out is not None:
        owner.paid_out = payload.paid_out
    _commit_or_conflict(db, "Owner name already taken")
    db.refresh(owner)
    return OwnerOut.model_validate(owner)


@app.get("/stats", response_model=StatsOut)
def stats(db: Session = Depends(get_db)) -> StatsOut:
    sold = db.scalars(select(Team).where(Team.owner_id.is_not(None))).all()
    pot = payouts.total_pot(sold)
    return StatsOut(
        total_pot=pot,
        payout_per_win=payouts.payout_per_win(pot),
        percentages=payouts.round_percentages(),
    )


@app.get("/leaderboard", response_model=list[LeaderboardEntry])
def leaderboard(db: Session = Depends(get_db)) -> list[LeaderboardEntry]:
    pot = payouts.total_pot(db.scalars(select(Team)).all())
    entries = [
        payouts.owner_stats(owner, owner.teams, pot)
        for owner in db.scalars(select(Owner)).all()
    ]
    entries.sort(key=lambda entry: entry.roi, reverse=True)
    return [
        LeaderboardEntry(
            owner=OwnerSlim.model_validate(entry.owner),
            teams_count=entry.teams_count,
            total_investment=entry.total_investment,
            total_payout=entry.total_payout,
            roi=entry.roi,
        )
        for entry in entries
    ]


# -- live auction --------------------------------------------------------------


@app.get("/auction", response_model=AuctionStateOut)
def get_auction(db: Session = Depends(get_db)) -> AuctionStateOut:
    auction = AuctionEngine(db)
    return _state_to_out(auction, auction.ensure_state())


def _action_response(auction: AuctionEngine, result: ActionResult) -> dict:
    return dict(
        state=_state_to_out(auction, result.state),
        remaining_lots=result.remaining_lots,
        sold_team_id=result.sold_team_id,
        sold_to=result.sold_to,
        sold_for=result.sold_for,
    )


@app.post("/auction", response_model=AuctionActionResponse)
def auction_action(
    payload: AuctionActionRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_user),
) -> AuctionActionResponse:
    if payload.action in ADMIN_ACTIONS and not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    bidder = payload.bidder
    if payload.action == "bid":
        bidder = (bidder or "").strip() or identity.username
        if bidder != identity.username and not identity.is_admin:
            raise HTTPException(status_code=403, detail="Cannot bid on behalf of another bidder")
    auction = AuctionEngine(db)
    result = auction.apply(
        payload.action, bidder=bidder, amount=payload.amount, team_id=payload.team_id
    )
    return AuctionActionResponse(**_action_response(auction, result))


@app.post("/auction/expire", response_model=ExpireResponse)
def expire_auction(
    team_id: Optional[int] = Query(default=None, alias="teamId"),
    db: Session = Depends(get_db),
) -> ExpireResponse:
    auction = AuctionEngine(db)
    result = auction.expire(team_id)
    return ExpireResponse(expired=result.expired, **_action_response(auction, result))


@app.post("/auction/restart", response_model=RestartResponse)
def restart_auction(
    db: Session = Depends(get_db),
    admin: Identity = Depends(require_admin),
) -> RestartResponse:
    AuctionEngine(db).restart()
    logger.warning("Auction restarted by %s", admin.username)
    return RestartResponse(message="Auction restarted successfully")
