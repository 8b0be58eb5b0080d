from __future__ import annotations

from datetime import datetime, timezone
from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base

ROUND_FIELDS = ("round64", "round32", "sweet16", "elite8", "final4", "championship")
STATE_ID = 1


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Owner(Base):
    __tablename__ = "owners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    paid: Mapped[bool] = mapped_column(Boolean, default=False)
    paid_out: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    teams: Mapped[list["Team"]] = relationship(back_populates="owner", lazy="selectin")


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    region: Mapped[str] = mapped_column(String, nullable=False)
    seed: Mapped[int] = mapped_column(Integer, nullable=False)
    owner_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("owners.id"), nullable=True, index=True
    )
    cost: Mapped[float] = mapped_column(Float, default=0.0)
    round64: Mapped[bool] = mapped_column(Boolean, default=False)
    round32: Mapped[bool] = mapped_column(Boolean, default=False)
    sweet16: Mapped[bool] = mapped_column(Boolean, default=False)
    elite8: Mapped[bool] = mapped_column(Boolean, default=False)
    final4: Mapped[bool] = mapped_column(Boolean, default=False)
    championship: Mapped[bool] = mapped_column(Boolean, default=False)

    owner: Mapped["Owner | None"] = relationship(back_populates="teams", lazy="selectin")


class AuctionState(Base):
    """Singleton row holding the live lot; ``version`` guards every update."""

    __tablename__ = "auction_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=STATE_ID)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    current_team_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("teams.id"), nullable=True
    )
    current_bid: Mapped[float] = mapped_column(Float, default=0.0)
    current_bidder: Mapped[str | None] = mapped_column(String, nullable=True)
    bids: Mapped[list] = mapped_column(JSON, default=list)
    last_bid_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    current_team: Mapped["Team | None"] = relationship(
        foreign_keys=[current_team_id], lazy="selectin"
    )

    __mapper_args__ = {"version_id_col": version}


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, default="user")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class UserSession(Base):
    __tablename__ = "user_sessions"

    token: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    user: Mapped["User"] = relationship(lazy="selectin")
