"""
Exception hierarchy tests
"""
from errors import (
    ArtRiseError,
    ArtworkNotFound,
    AuctionEnded,
    BidConflict,
    BidNotAboveOwn,
    BidRejected,
    BidTooLow,
    Conflict,
    EmailDeliveryError,
    Forbidden,
    NotAuthenticated,
    NotFound,
    ValidationFailed,
)


class TestArtRiseError:
    def test_defaults(self):
        error = ArtRiseError()
        assert error.message == "Unexpected error"
        assert error.status_code == 500
        assert error.to_body() == {"success": False, "error": "Unexpected error"}

    def test_context_merged_into_body(self):
        error = ValidationFailed("bad", context={"field": "amount"})
        assert error.to_body() == {"success": False, "error": "bad", "field": "amount"}

    def test_status_codes(self):
        assert ValidationFailed("x").status_code == 400
        assert NotAuthenticated().status_code == 401
        assert Forbidden().status_code == 403
        assert NotFound("x").status_code == 404
        assert Conflict("x").status_code == 409


class TestBidErrors:
    def test_bid_too_low(self):
        error = BidTooLow(105, 100, 5)
        assert isinstance(error, BidRejected)
        assert error.message == "Minimum bid is €105.00"
        assert error.to_body() == {
            "success": False,
            "error": "Minimum bid is €105.00",
            "minBidAmount": 105,
            "currentHighestBid": 100,
            "minIncrement": 5,
        }

    def test_not_above_own(self):
        error = BidNotAboveOwn(150)
        assert error.status_code == 400
        assert error.context == {"currentBid": 150}
        assert "€150.00" in error.message

    def test_auction_ended(self):
        error = AuctionEnded("abc")
        assert error.artwork_id == "abc"
        assert error.message == "This auction has ended"

    def test_not_found_variants(self):
        error = ArtworkNotFound("abc")
        assert isinstance(error, NotFound)
        assert error.to_body() == {"success": False, "error": "Artwork not found"}

    def test_conflict(self):
        error = BidConflict("abc")
        assert isinstance(error, Conflict)
        assert error.status_code == 409


class TestEmailDeliveryError:
    def test_message(self):
        error = EmailDeliveryError("a@example.com", "HTTP 500")
        assert error.recipient == "a@example.com"
        assert error.message == "Failed to send email to a@example.com: HTTP 500"
