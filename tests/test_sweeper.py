from __future__ import annotations

from calcutta.engine import AuctionEngine
from calcutta.models import Team
from calcutta.sweeper import ExpirySweeper


def test_sweep_settles_a_lapsed_lot(session_factory, db, teams, server_clock):
    auction = AuctionEngine(db)
    lot_id = auction.apply("start").state.current_team_id
    auction.apply("bid", bidder="alice", amount=9)
    sweeper = ExpirySweeper(session_factory=session_factory, interval=1)

    server_clock.advance(10)
    assert sweeper.sweep_once() is False

    server_clock.advance(5)
    assert sweeper.sweep_once() is True
    assert sweeper.sweep_once() is False

    db.expire_all()
    assert db.get(Team, lot_id).owner.name == "alice"


def test_sweep_on_an_idle_auction_is_a_no_op(session_factory):
    assert ExpirySweeper(session_factory=session_factory, interval=1).sweep_once() is False


def test_start_and_stop_the_background_thread(session_factory):
    sweeper = ExpirySweeper(session_factory=session_factory, interval=0.01)
    sweeper.start()
    sweeper.start()
    assert sweeper._thread.is_alive()
    thread = sweeper._thread
    sweeper.stop()
    assert not thread.is_alive()
