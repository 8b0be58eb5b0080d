"""Countdown bookkeeping for a polling auction client.

A countdown epoch is identified by the current lot and the time of its last accepted bid.
Within one epoch "going once" and "going twice" are announced at most once each and
auto-settlement is requested at most once. Any new bid, lot change or resume starts a new
epoch and re-arms all three.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .config import COUNTDOWN_INTERVAL

NONE = "none"
ONCE = "once"
TWICE = "twice"


@dataclass
class CountdownView:
    remaining: float | None = None
    warning: str = NONE
    announce: str | None = None
    settle: bool = False


class CountdownTracker:
    def __init__(self, interval: float = COUNTDOWN_INTERVAL) -> None:
        self.interval = interval
        self.epoch: tuple[Any, Any] | None = None
        self.announced = NONE
        self.settle_requested = False

    def reset(self) -> None:
        self.epoch = None
        self.announced = NONE
        self.settle_requested = False

    def release_settle(self) -> None:
        """Re-arm settlement after a failed attempt so the next tick retries."""
        self.settle_requested = False

    def _enter(self, epoch: tuple[Any, Any]) -> None:
        if epoch != self.epoch:
            self.epoch = epoch
            self.announced = NONE
            self.settle_requested = False

    def evaluate(self, state: dict | None, now: float) -> CountdownView:
        """Advance the tracker for ``state`` as observed at ``now`` (epoch seconds)."""
        if not state or not state.get("isActive") or state.get("currentTeamId") is None:
            self.reset()
            return CountdownView()

        last_bid_time = state.get("lastBidTime")
        self._enter((state["currentTeamId"], last_bid_time))
        if last_bid_time is None:
            # Bidding is open indefinitely until the first bid.
            return CountdownView()

        elapsed = max(0.0, now - last_bid_time / 1000)
        remaining = self.interval - (elapsed % self.interval)

        if elapsed >= self.interval * 3:
            settle = False
            if (
                not self.settle_requested
                and (state.get("currentBid") or 0) > 0
                and state.get("currentBidder")
            ):
                self.settle_requested = True
                settle = True
            return CountdownView(remaining=0.0, warning=TWICE, settle=settle)

        if elapsed >= self.interval * 2:
            announce = None
            if self.announced != TWICE:
                self.announced = announce = TWICE
            return CountdownView(remaining=remaining, warning=TWICE, announce=announce)

        if elapsed >= self.interval:
            announce = None
            if self.announced == NONE:
                self.announced = announce = ONCE
            return CountdownView(remaining=remaining, warning=self.announced, announce=announce)

        return CountdownView(remaining=remaining)
