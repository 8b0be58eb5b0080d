"""Polling client for the live auction.

``AuctionController`` mirrors what a bidder's browser does: poll ``GET /auction`` once a
second, turn observed lot changes and new bids into an event log, run the going-once /
going-twice countdown locally and ask the server to settle the lot when it lapses.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Optional

import httpx

from .config import COUNTDOWN_INTERVAL
from .countdown import ONCE, TWICE, CountdownTracker
from .payouts import format_currency

logger = logging.getLogger(__name__)

POLL_INTERVAL = 1.0
ENTRY_TYPES = ("bot", "bid", "sold", "system", "warning")


@dataclass
class LogEntry:
    type: str
    message: str
    timestamp: int
    bidder: Optional[str] = None
    amount: Optional[float] = None


class EventLog:
    """Append-only auction chat, optionally persisted to a JSON file between runs."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path else None
        self._entries: list[LogEntry] = []
        if self.path and self.path.exists():
            try:
                raw = json.loads(self.path.read_text())
                self._entries = [LogEntry(**item) for item in raw]
            except (ValueError, TypeError) as exc:
                logger.warning("Discarding unreadable event log %s: %s", self.path, exc)

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def append(
        self,
        type: str,
        message: str,
        timestamp: int,
        bidder: str | None = None,
        amount: float | None = None,
    ) -> LogEntry:
        if type not in ENTRY_TYPES:
            raise ValueError(f"Unknown log entry type: {type}")
        entry = LogEntry(type, message, timestamp, bidder, amount)
        self._entries.append(entry)
        self._save()
        return entry

    def clear(self) -> None:
        self._entries = []
        self._save()

    def _save(self) -> None:
        if self.path:
            self.path.write_text(json.dumps([asdict(entry) for entry in self._entries]))


class AuctionApiError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class AuctionApi:
    def __init__(self, http: httpx.Client, token: str | None = None) -> None:
        self.http = http
        self.token = token

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def _json(self, response: httpx.Response) -> dict:
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            message = body.get("error") or body.get("detail") or response.reason_phrase
            raise AuctionApiError(response.status_code, str(message))
        return response.json()

    def state(self) -> dict:
        return self._json(self.http.get("/auction", headers=self._headers()))

    def action(self, action: str, **fields) -> dict:
        body = {"action": action, **{k: v for k, v in fields.items() if v is not None}}
        return self._json(self.http.post("/auction", json=body, headers=self._headers()))

    def expire(self, team_id: int | None = None) -> dict:
        params = {"teamId": team_id} if team_id is not None else None
        return self._json(
            self.http.post("/auction/expire", params=params, headers=self._headers())
        )

    def restart(self) -> dict:
        return self._json(self.http.post("/auction/restart", headers=self._headers()))

    def stats(self) -> dict:
        return self._json(self.http.get("/stats", headers=self._headers()))


class AuctionController:
    def __init__(
        self,
        api: AuctionApi,
        log: EventLog | None = None,
        interval: float = COUNTDOWN_INTERVAL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api = api
        self.log = log if log is not None else EventLog()
        self.tracker = CountdownTracker(interval)
        self.clock = clock
        self.state: dict | None = None
        self.countdown: float | None = None
        self.warning = "none"
        self.total_pot = 0.0
        self.last_announced_lot: int | None = None
        self.last_bid_count = 0

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _system(self, message: str) -> None:
        self.log.append("system", message, self._now_ms())

    def _forget_lot(self) -> None:
        self.last_announced_lot = None
        self.last_bid_count = 0
        self.tracker.reset()

    # -- polling ---------------------------------------------------------------

    def tick(self) -> None:
        try:
            data = self.api.state()
        except (httpx.HTTPError, AuctionApiError) as exc:
            logger.warning("Auction poll failed: %s", exc)
            return
        self.reconcile(data)
        self.evaluate()
        try:
            self.total_pot = self.api.stats()["totalPot"]
        except (httpx.HTTPError, AuctionApiError, KeyError) as exc:
            logger.warning("Stats poll failed: %s", exc)

    def reconcile(self, data: dict) -> None:
        team = data.get("currentTeam")
        if not team:
            self.last_announced_lot = None
            self.last_bid_count = 0
        elif team["id"] != self.last_announced_lot:
            self._forget_lot()
            self.last_announced_lot = team["id"]
            self.log.append(
                "bot",
                f"Now auctioning: {team['name']} - {team['region']} Region, "
                f"Seed #{team['seed']}",
                self._now_ms(),
            )
        bids = data.get("bids") or []
        if len(bids) > self.last_bid_count:
            for bid in bids[self.last_bid_count:]:
                self.log.append(
                    "bid",
                    f"{bid['bidder']} bids {format_currency(bid['amount'])}!",
                    bid["timestamp"],
                    bidder=bid["bidder"],
                    amount=bid["amount"],
                )
            self.last_bid_count = len(bids)
        self.state = data

    def evaluate(self) -> None:
        view = self.tracker.evaluate(self.state, self.clock())
        self.countdown = view.remaining
        self.warning = view.warning
        if view.announce == ONCE:
            self.log.append("warning", "Going once!", self._now_ms())
        elif view.announce == TWICE:
            self.log.append("warning", "Going TWICE!", self._now_ms())
        if view.settle:
            self.settle()

    def settle(self) -> bool:
        """Ask the server to close the observed lot once its deadline has passed.

        The log records what the server settled, not what the last poll showed. Returns
        False when nothing was settled; a newer bid or lot shows up on the next poll.
        """
        lot_id = (self.state or {}).get("currentTeamId")
        try:
            result = self.api.expire(team_id=lot_id)
        except (httpx.HTTPError, AuctionApiError) as exc:
            logger.warning("Settlement of team %s failed: %s", lot_id, exc)
            self.tracker.release_settle()
            return False
        if not result.get("expired"):
            logger.info("Team %s was not due for settlement on the server", lot_id)
            self.tracker.release_settle()
            return False

        self._record_settlement(result)
        return True

    def _record_settlement(self, result: dict) -> None:
        if result.get("soldTo"):
            self.log.append(
                "sold",
                f"SOLD to {result['soldTo']} for {format_currency(result['soldFor'])}!",
                self._now_ms(),
                bidder=result["soldTo"],
                amount=result["soldFor"],
            )
        else:
            self._system("No bids placed, moving to the next team")
        remaining = result.get("remainingLots") or 0
        if remaining > 0:
            self._system(f"{remaining} teams remaining. Next team coming up...")
        else:
            self._system("Auction complete! All teams have been sold!")
        self._forget_lot()
        self.reconcile(result["state"])

    def run(self, stop_event: threading.Event, poll_interval: float = POLL_INTERVAL) -> None:
        while not stop_event.is_set():
            self.tick()
            stop_event.wait(poll_interval)

    # -- user actions ----------------------------------------------------------

    def start(self) -> dict:
        result = self.api.action("start")
        self.log.clear()
        self._forget_lot()
        self._system("Auction started! First team selected randomly...")
        self.reconcile(result["state"])
        return result

    def next_lot(self) -> dict:
        result = self.api.action("next")
        self._system("Selecting next team randomly...")
        self.reconcile(result["state"])
        return result

    def sell(self) -> dict:
        """Close the current lot now (admin only), selling to the high bidder if any."""
        lot_id = (self.state or {}).get("currentTeamId")
        result = self.api.action("sold", teamId=lot_id)
        self._record_settlement(result)
        return result

    def stop(self) -> dict:
        result = self.api.action("stop")
        self._system("Auction paused")
        self.reconcile(result["state"])
        return result

    def resume(self) -> dict:
        result = self.api.action("resume")
        self._system("Auction resumed")
        self.reconcile(result["state"])
        return result

    def restart(self) -> dict:
        result = self.api.restart()
        self.log.clear()
        self._forget_lot()
        self._system("Auction has been restarted! All data cleared.")
        return result

    def bid(self, amount: float, bidder: str | None = None) -> dict:
        result = self.api.action("bid", bidder=bidder, amount=amount)
        self.reconcile(result["state"])
        return result
