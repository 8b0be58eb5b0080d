from __future__ import annotations


class AuctionError(Exception):
    """Base class for auction rule violations reported to the caller."""

    status_code = 400
    default_message = "Auction request rejected"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class InactiveAuction(AuctionError):
    default_message = "No active auction"


class BidTooLow(AuctionError):
    default_message = "Bid must be higher than current bid"


class InvalidBid(AuctionError):
    default_message = "Bid requires a bidder and a positive amount"


class NoLotsAvailable(AuctionError):
    default_message = "No teams available for auction"


class NoLotToResume(AuctionError):
    default_message = "No team to resume auction for"


class InvalidAction(AuctionError):
    default_message = "Invalid action"


class LotAlreadySettled(AuctionError):
    status_code = 409
    default_message = "Team is no longer up for auction"


class ConcurrentUpdate(AuctionError):
    status_code = 409
    default_message = "Auction state changed concurrently, try again"
