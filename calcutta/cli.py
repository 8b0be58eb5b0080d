from __future__ import annotations

import argparse
import logging
import sys
import threading

import httpx
from sqlalchemy import delete, select

from .auth import hash_password
from .client import AuctionApi, AuctionController, EventLog
from .config import ADMIN_PASSWORD, ADMIN_USERNAME, configure_logging
from .db import Base, engine, session_scope
from .engine import AuctionEngine
from .models import STATE_ID, AuctionState, Owner, Team, User, UserSession

logger = logging.getLogger(__name__)

REGIONS = ("South", "West", "East", "Midwest")

# 16 teams per region, listed in seed order.
TEAM_NAMES = (
    "Duke", "Florida State", "Villanova", "Memphis", "Iowa State", "Texas Tech",
    "Clemson", "Marquette", "Oklahoma", "Utah", "Nevada", "Richmond", "Charleston",
    "Iona", "Vermont", "Fairleigh Dickinson",
    "Kansas", "UCLA", "Gonzaga", "Northwestern", "Saint Mary's", "TCU",
    "Michigan State", "Maryland", "West Virginia", "Boise State", "NC State", "Drake",
    "Furman", "UC Santa Barbara", "Howard", "Texas A&M Corpus Christi",
    "Purdue", "Texas", "Xavier", "Virginia", "Miami FL", "Indiana", "Iowa", "Kentucky",
    "Auburn", "Penn State", "Pittsburgh", "Providence", "Oral Roberts", "Louisiana",
    "Montana State", "Texas Southern",
    "Houston", "Arizona", "Baylor", "Alabama", "San Diego State", "Creighton",
    "Missouri", "USC", "Illinois", "Arkansas", "Arizona State", "VCU", "Akron",
    "Grand Canyon", "Colgate", "Northern Kentucky",
)


def seed(db) -> int:
    """Wipe the pool and load a fresh 64-team bracket with a bootstrap admin."""
    db.execute(delete(AuctionState))
    db.execute(delete(Team))
    db.execute(delete(Owner))
    db.execute(delete(UserSession))
    db.execute(delete(User))
    db.add(
        User(
            username=ADMIN_USERNAME,
            password_hash=hash_password(ADMIN_PASSWORD),
            role="admin",
        )
    )
    db.add(AuctionState(id=STATE_ID, is_active=False, current_bid=0.0, bids=[]))
    names = iter(TEAM_NAMES)
    for region in REGIONS:
        for seed_number in range(1, 17):
            db.add(Team(name=next(names), region=region, seed=seed_number, cost=0.0))
    db.commit()
    logger.info("Seeded %d teams and admin user %s", len(TEAM_NAMES), ADMIN_USERNAME)
    return len(TEAM_NAMES)


def make_admin(db, username: str) -> None:
    user = db.scalars(select(User).where(User.username == username)).first()
    if not user:
        raise SystemExit(f"No user named {username}")
    user.role = "admin"
    db.commit()
    logger.info("%s is now an admin", username)


def reset_auction(db) -> None:
    AuctionEngine(db).restart()
    logger.info("Owners cleared, teams and auction state reset")


def watch(url: str, token: str | None, log_file: str | None, interval: float) -> None:
    stop_event = threading.Event()
    with httpx.Client(base_url=url, timeout=5.0) as http:
        controller = AuctionController(AuctionApi(http, token), EventLog(log_file))
        seen = len(controller.log)
        thread = threading.Thread(
            target=controller.run, args=(stop_event, interval), daemon=True
        )
        thread.start()
        try:
            while thread.is_alive():
                thread.join(timeout=interval)
                entries = controller.log.entries
                for entry in entries[seen:]:
                    print(f"[{entry.type}] {entry.message}")
                seen = len(entries)
        except KeyboardInterrupt:
            stop_event.set()
            thread.join()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="calcutta", description="Calcutta auction pool")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    sub.add_parser("seed", help="wipe and load the 64-team bracket")

    admin = sub.add_parser("make-admin", help="grant the admin role to a user")
    admin.add_argument("username")

    sub.add_parser("reset-auction", help="delete owners and reset every team")

    watcher = sub.add_parser("watch", help="follow the live auction and auto-settle lots")
    watcher.add_argument("--url", default="http://127.0.0.1:8000")
    watcher.add_argument("--token", default=None)
    watcher.add_argument("--log-file", default=".calcutta-session.json")
    watcher.add_argument("--interval", type=float, default=1.0)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("calcutta.main:app", host=args.host, port=args.port)
        return 0
    if args.command == "watch":
        watch(args.url, args.token, args.log_file, args.interval)
        return 0

    Base.metadata.create_all(bind=engine)
    with session_scope() as db:
        if args.command == "seed":
            seed(db)
        elif args.command == "make-admin":
            make_admin(db, args.username)
        elif args.command == "reset-auction":
            reset_auction(db)
    return 0


if __name__ == "__main__":
    sys.exit(main())
