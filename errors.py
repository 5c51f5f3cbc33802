"""
Application exceptions.

Every error raised on purpose by the API derives from ArtRiseError and
carries the HTTP status it maps to plus optional machine-readable context
that is merged into the JSON error body.
"""

from typing import Any, Dict, Optional


class ArtRiseError(Exception):
    """Base class for all expected application errors"""

    status_code = 500

    def __init__(self, message: str = "Unexpected error", context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message, **self.context}


class ValidationFailed(ArtRiseError):
    status_code = 400


class NotAuthenticated(ArtRiseError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class Forbidden(ArtRiseError):
    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFound(ArtRiseError):
    status_code = 404


class Conflict(ArtRiseError):
    status_code = 409


# =============================================================================
# Bidding
# =============================================================================


class ArtworkNotFound(NotFound):
    def __init__(self, artwork_id: str):
        self.artwork_id = artwork_id
        super().__init__("Artwork not found")


class AuctionNotFound(NotFound):
    def __init__(self, auction_id: str):
        self.auction_id = auction_id
        super().__init__("Auction not found")


class BidRejected(ValidationFailed):
    """A bid that was well-formed but not acceptable"""


class AuctionEnded(BidRejected):
    def __init__(self, artwork_id: str):
        self.artwork_id = artwork_id
        super().__init__("This auction has ended")


class BidTooLow(BidRejected):
    def __init__(self, min_bid: float, current_highest: float, min_increment: float):
        self.min_bid = min_bid
        super().__init__(
            f"Minimum bid is €{min_bid:.2f}",
            context={
                "minBidAmount": min_bid,
                "currentHighestBid": current_highest,
                "minIncrement": min_increment,
            },
        )


class BidNotAboveOwn(BidRejected):
    def __init__(self, current_bid: float):
        self.current_bid = current_bid
        super().__init__(
            f"New bid must be higher than your current bid of €{current_bid:.2f}",
            context={"currentBid": current_bid},
        )


class BidConflict(Conflict):
    """Another bid was recorded between validation and write"""

    def __init__(self, artwork_id: str):
        self.artwork_id = artwork_id
        super().__init__("The leading bid changed while your bid was processed, please try again")


class EmailDeliveryError(ArtRiseError):
    def __init__(self, recipient: str, reason: str):
        self.recipient = recipient
        super().__init__(f"Failed to send email to {recipient}: {reason}")
