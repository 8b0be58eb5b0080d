"""Pot and payout arithmetic for the pool.

The pot is the sum of every settled lot's cost. Each tournament round gets a fixed share
of the pot, split evenly across the teams that win a game in that round.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .models import ROUND_FIELDS, Owner, Team

PAYOUT_PERCENTAGES = {
    "round64": 0.16,
    "round32": 0.16,
    "sweet16": 0.24,
    "elite8": 0.16,
    "final4": 0.16,
    "championship": 0.12,
}

WINNERS_PER_ROUND = {
    "round64": 32,
    "round32": 16,
    "sweet16": 8,
    "elite8": 4,
    "final4": 2,
    "championship": 1,
}


@dataclass
class OwnerStats:
    owner: Owner
    teams_count: int
    total_investment: float
    total_payout: float
    roi: float


def total_pot(teams: Iterable[Team]) -> float:
    return sum(float(team.cost or 0) for team in teams)


def payout_per_win(pot: float) -> dict[str, float]:
    return {
        field: pot * PAYOUT_PERCENTAGES[field] / WINNERS_PER_ROUND[field]
        for field in ROUND_FIELDS
    }


def team_payout(team: Team, pot: float) -> float:
    per_win = payout_per_win(pot)
    return sum(per_win[field] for field in ROUND_FIELDS if getattr(team, field))


def owner_stats(owner: Owner, teams: Iterable[Team], pot: float) -> OwnerStats:
    teams = list(teams)
    investment = sum(float(team.cost or 0) for team in teams)
    payout = sum(team_payout(team, pot) for team in teams)
    roi = (payout - investment) / investment * 100 if investment > 0 else 0.0
    return OwnerStats(
        owner=owner,
        teams_count=len(teams),
        total_investment=investment,
        total_payout=payout,
        roi=roi,
    )


def round_percentages() -> dict[str, str]:
    return {field: f"{PAYOUT_PERCENTAGES[field] * 100:g}%" for field in ROUND_FIELDS}


def format_currency(amount: float) -> str:
    return f"${amount:.2f}"
