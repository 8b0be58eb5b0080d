"""Live auction state machine.

Every action is a single read-modify-write of the ``AuctionState`` row. The row is read
``FOR UPDATE`` and written back through SQLAlchemy's version counter, so a writer that
read a stale version fails with ``StaleDataError`` instead of overwriting a newer bid or
settling a lot twice. Settlement writes (owner creation and team assignment) share the
same transaction as the state update.
"""
from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .config import COUNTDOWN_INTERVAL
from .errors import (
    AuctionError,
    BidTooLow,
    ConcurrentUpdate,
    InactiveAuction,
    InvalidAction,
    InvalidBid,
    LotAlreadySettled,
    NoLotToResume,
    NoLotsAvailable,
)
from .models import ROUND_FIELDS, STATE_ID, AuctionState, Owner, Team, utcnow
from .payouts import format_currency

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
# Warnings fire at 1x and 2x the interval; the lot is due for settlement at 3x.
SETTLE_AFTER_INTERVALS = 3


def to_millis(moment: datetime | None) -> int | None:
    if moment is None:
        return None
    return int(moment.replace(tzinfo=timezone.utc).timestamp() * 1000)


@dataclass
class ActionResult:
    state: AuctionState
    remaining_lots: int | None = None
    expired: bool = False
    sold_team_id: int | None = None
    sold_to: str | None = None
    sold_for: float | None = None


class AuctionEngine:
    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
        countdown_interval: float = COUNTDOWN_INTERVAL,
    ) -> None:
        self.db = db
        self.clock = clock or utcnow
        self.rng = rng or random.Random()
        self.countdown_interval = countdown_interval

    # -- reads -----------------------------------------------------------------

    def ensure_state(self) -> AuctionState:
        state = self.db.get(AuctionState, STATE_ID)
        if state:
            return state
        state = AuctionState(id=STATE_ID, is_active=False, current_bid=0.0, bids=[])
        self.db.add(state)
        try:
            self.db.commit()
        except IntegrityError:
            # Another worker created the row first.
            self.db.rollback()
            return self.db.get(AuctionState, STATE_ID)
        self.db.refresh(state)
        return state

    def deadline(self, state: AuctionState) -> datetime | None:
        if not state.is_active or state.last_bid_time is None or state.current_bid <= 0:
            return None
        return state.last_bid_time + timedelta(
            seconds=self.countdown_interval * SETTLE_AFTER_INTERVALS
        )

    def remaining_lots(self) -> int:
        return self.db.scalar(
            select(func.count()).select_from(Team).where(Team.owner_id.is_(None))
        )

    # -- writes ----------------------------------------------------------------

    def apply(
        self,
        action: str,
        bidder: str | None = None,
        amount: float | None = None,
        team_id: int | None = None,
    ) -> ActionResult:
        if action in ("start", "next"):
            return self._transact(action, self._start)
        if action == "bid":
            # Safe to re-run: the retry re-validates against the winning bid.
            return self._transact(
                action, lambda state: self._bid(state, bidder, amount), retry=True
            )
        if action == "sold":
            return self._transact(action, lambda state: self._sold(state, team_id))
        if action == "stop":
            return self._transact(action, self._stop)
        if action == "resume":
            return self._transact(action, self._resume)
        raise InvalidAction(f"Invalid action: {action}")

    def expire(self, team_id: int | None = None) -> ActionResult:
        """Settle the current lot if its countdown has lapsed; otherwise change nothing.

        With ``team_id`` the lot is only settled while it is still the current one, so a
        poller never closes a lot it has not seen.
        """
        return self._transact(
            "expire", lambda state: self._expire(state, team_id), retry=True
        )

    def restart(self) -> ActionResult:
        return self._transact("restart", self._restart, retry=True)

    def _transact(
        self,
        label: str,
        mutate: Callable[[AuctionState], ActionResult],
        retry: bool = False,
    ) -> ActionResult:
        self.ensure_state()
        attempts = MAX_ATTEMPTS if retry else 1
        for attempt in range(1, attempts + 1):
            try:
                state = self.db.get(
                    AuctionState, STATE_ID, with_for_update=True, populate_existing=True
                )
                result = mutate(state)
                self.db.commit()
            except AuctionError:
                self.db.rollback()
                raise
            except (StaleDataError, IntegrityError) as exc:
                self.db.rollback()
                logger.info(
                    "Auction %s lost a concurrent update (attempt %d/%d): %s",
                    label,
                    attempt,
                    attempts,
                    exc,
                )
                continue
            return result
        raise ConcurrentUpdate()

    def _touch(self, state: AuctionState) -> None:
        state.updated_at = self.clock()

    def _unsold_teams(self) -> list[Team]:
        return list(
            self.db.scalars(
                select(Team).where(Team.owner_id.is_(None)).order_by(Team.id)
            ).all()
        )

    def _open_lot(self, state: AuctionState, team: Team) -> None:
        state.is_active = True
        state.current_team_id = team.id
        state.current_bid = 0.0
        state.current_bidder = None
        state.bids = []
        state.last_bid_time = None
        self._touch(state)
        logger.info("Now auctioning %s (%s #%d)", team.name, team.region, team.seed)

    def _close(self, state: AuctionState) -> None:
        state.is_active = False
        state.current_team_id = None
        state.current_bid = 0.0
        state.current_bidder = None
        state.bids = []
        state.last_bid_time = None
        self._touch(state)

    def _start(self, state: AuctionState) -> ActionResult:
        unsold = self._unsold_teams()
        if not unsold:
            raise NoLotsAvailable()
        self._open_lot(state, self.rng.choice(unsold))
        return ActionResult(state)

    def _bid(self, state: AuctionState, bidder: str | None, amount: float | None) -> ActionResult:
        if not state.is_active or state.current_team_id is None:
            raise InactiveAuction()
        bidder = (bidder or "").strip()
        if not bidder or amount is None or not math.isfinite(amount):
            raise InvalidBid()
        if amount <= state.current_bid:
            raise BidTooLow(
                f"Bid must exceed current bid of {format_currency(state.current_bid)}"
            )
        now = self.clock()
        state.bids = [
            *(state.bids or []),
            {"bidder": bidder, "amount": amount, "timestamp": to_millis(now)},
        ]
        state.current_bid = amount
        state.current_bidder = bidder
        state.last_bid_time = now
        self._touch(state)
        logger.debug("Bid %s by %s on team %s", amount, bidder, state.current_team_id)
        return ActionResult(state)

    def _find_or_create_owner(self, name: str) -> Owner:
        owner = self.db.scalars(
            select(Owner).where(func.lower(Owner.name) == name.lower())
        ).first()
        if owner:
            return owner
        owner = Owner(name=name)
        self.db.add(owner)
        self.db.flush()
        logger.info("Created owner %s", name)
        return owner

    def _sold(self, state: AuctionState, team_id: int | None) -> ActionResult:
        # Pausing does not block settlement: an admin may close a lot while paused.
        if state.current_team_id is None:
            raise InactiveAuction()
        if team_id is not None and team_id != state.current_team_id:
            raise LotAlreadySettled()
        team = self.db.get(Team, state.current_team_id)
        result = ActionResult(state, sold_team_id=team.id)
        if state.current_bidder and state.current_bid > 0:
            if team.owner_id is not None:
                raise LotAlreadySettled()
            owner = self._find_or_create_owner(state.current_bidder)
            team.owner_id = owner.id
            team.cost = state.current_bid
            self.db.flush()
            result.sold_to, result.sold_for = owner.name, team.cost
            logger.info(
                "Sold %s to %s for %s", team.name, owner.name, format_currency(team.cost)
            )
        else:
            logger.info("No bids on %s, moving on", team.name)

        unsold = self._unsold_teams()
        if unsold:
            self._open_lot(state, self.rng.choice(unsold))
        else:
            self._close(state)
            logger.info("Auction complete, every team has an owner")
        result.remaining_lots = len(unsold)
        return result

    def _stop(self, state: AuctionState) -> ActionResult:
        state.is_active = False
        self._touch(state)
        logger.info("Auction paused on team %s", state.current_team_id)
        return ActionResult(state)

    def _resume(self, state: AuctionState) -> ActionResult:
        if state.current_team_id is None:
            raise NoLotToResume()
        state.is_active = True
        # A standing bid gets a full countdown window again.
        state.last_bid_time = self.clock() if state.current_bid > 0 else None
        self._touch(state)
        logger.info("Auction resumed on team %s", state.current_team_id)
        return ActionResult(state)

    def _expire(self, state: AuctionState, team_id: int | None) -> ActionResult:
        if team_id is not None and team_id != state.current_team_id:
            return ActionResult(state)
        deadline = self.deadline(state)
        if deadline is None or not state.current_bidder or self.clock() < deadline:
            return ActionResult(state)
        result = self._sold(state, state.current_team_id)
        result.expired = True
        return result

    def _restart(self, state: AuctionState) -> ActionResult:
        self.db.execute(
            update(Team).values(
                owner_id=None, cost=0.0, **{field: False for field in ROUND_FIELDS}
            )
        )
        self.db.execute(delete(Owner))
        self._close(state)
        logger.warning("Auction restarted: owners deleted, teams reset")
        return ActionResult(state, remaining_lots=self.remaining_lots())
