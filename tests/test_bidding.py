from datetime import timedelta

import pytest
from pymongo.errors import DuplicateKeyError

import bidding
from database import utcnow
from errors import ArtworkNotFound, AuctionEnded, AuctionNotFound, BidConflict, BidNotAboveOwn, BidTooLow, ValidationFailed
from schemas import ArtworkStatus


@pytest.fixture
def auction(make_auction):
    return make_auction(min_increment=5)


@pytest.fixture
def artwork(make_artwork, auction):
    return make_artwork(auction, start_price=100)


def _id(doc):
    return str(doc["_id"])


class TestMinimumBid:
    def test_start_price_when_no_bids(self):
        assert bidding.minimum_bid(None, 100, 5) == 100

    def test_leading_bid_plus_increment(self):
        assert bidding.minimum_bid(150, 100, 5) == 155

    def test_min_increment_falls_back_to_default(self):
        assert bidding.min_increment({}) == 5
        assert bidding.min_increment({"minIncrementDefault": 20}) == 20


class TestPlaceBid:
    def test_below_start_price_rejected(self, db, artwork, make_user):
        buyer = make_user()
        with pytest.raises(BidTooLow) as exc:
            bidding.place_bid(db, _id(artwork), buyer["id"], 99)
        assert exc.value.context["minBidAmount"] == 100
        assert exc.value.context["currentHighestBid"] == 0
        assert exc.value.context["minIncrement"] == 5
        assert db["offer"].count_documents({}) == 0

    def test_start_price_accepted(self, db, artwork, make_user):
        buyer = make_user()
        outcome = bidding.place_bid(db, _id(artwork), buyer["id"], 100)

        assert outcome.is_new_bid is True
        assert outcome.message == "Bid placed successfully"
        assert outcome.stats == {"currentHighestBid": 100, "nextMinBid": 105, "minIncrement": 5}
        assert outcome.offer["amount"] == 100
        assert [e["amount"] for e in outcome.offer["bidHistory"]] == [100]

    def test_next_bid_needs_increment(self, db, artwork, make_user):
        a, b = make_user(), make_user()
        bidding.place_bid(db, _id(artwork), a["id"], 100)

        with pytest.raises(BidTooLow) as exc:
            bidding.place_bid(db, _id(artwork), b["id"], 104)
        assert exc.value.context["minBidAmount"] == 105

        outcome = bidding.place_bid(db, _id(artwork), b["id"], 105)
        assert outcome.stats["nextMinBid"] == 110

    def test_lower_than_own_bid_rejected(self, db, artwork, make_user):
        a = make_user()
        bidding.place_bid(db, _id(artwork), a["id"], 150)

        with pytest.raises(BidNotAboveOwn) as exc:
            bidding.place_bid(db, _id(artwork), a["id"], 120)
        assert exc.value.context == {"currentBid": 150}

        offer = db["offer"].find_one({"userId": a["id"]})
        assert offer["amount"] == 150

    def test_raise_updates_single_offer(self, db, artwork, make_user):
        a = make_user()
        bidding.place_bid(db, _id(artwork), a["id"], 100)
        outcome = bidding.place_bid(db, _id(artwork), a["id"], 130)

        assert outcome.is_new_bid is False
        assert outcome.message == "Bid increased successfully"
        assert db["offer"].count_documents({"artworkId": _id(artwork), "userId": a["id"]}) == 1
        assert [e["amount"] for e in outcome.offer["bidHistory"]] == [100, 130]
        assert outcome.offer["amount"] == 130

    def test_accepted_bid_advances_version(self, db, artwork, make_user):
        a = make_user()
        bidding.place_bid(db, _id(artwork), a["id"], 100)
        bidding.place_bid(db, _id(artwork), a["id"], 120)

        stored = db["artwork"].find_one({"_id": artwork["_id"]})
        assert stored["bidVersion"] == 2
        assert stored["highestBid"] == 120

    def test_non_positive_amount(self, db, artwork, make_user):
        with pytest.raises(ValidationFailed):
            bidding.place_bid(db, _id(artwork), make_user()["id"], 0)

    def test_unknown_artwork(self, db, make_user):
        with pytest.raises(ArtworkNotFound):
            bidding.place_bid(db, "64b000000000000000000000", make_user()["id"], 100)
        with pytest.raises(ArtworkNotFound):
            bidding.place_bid(db, "not-an-id", make_user()["id"], 100)

    def test_missing_auction(self, db, make_artwork, make_user):
        orphan = make_artwork({"id": "64b000000000000000000001"})
        with pytest.raises(AuctionNotFound):
            bidding.place_bid(db, _id(orphan), make_user()["id"], 100)

    def test_past_end_date_rejected(self, db, auction, make_artwork, make_user):
        ended = make_artwork(auction, ends_in=timedelta(minutes=-1))
        with pytest.raises(AuctionEnded):
            bidding.place_bid(db, _id(ended), make_user()["id"], 100)

    def test_settled_artwork_rejected(self, db, auction, make_artwork, make_user):
        sold = make_artwork(auction, status=ArtworkStatus.SOLD)
        with pytest.raises(AuctionEnded):
            bidding.place_bid(db, _id(sold), make_user()["id"], 100)


class TestBidConflict:
    def test_stale_version_raises_conflict(self, db, artwork):
        db["artwork"].update_one({"_id": artwork["_id"]}, {"$inc": {"bidVersion": 1}})

        with pytest.raises(BidConflict):
            bidding._advance_bid_version(db, artwork, 120, utcnow())

    def test_closed_artwork_reports_ended(self, db, artwork):
        db["artwork"].update_one({"_id": artwork["_id"]}, {"$set": {"status": ArtworkStatus.UNSOLD.value}})

        with pytest.raises(AuctionEnded):
            bidding._advance_bid_version(db, artwork, 120, utcnow())

    def test_bid_between_swap_and_offer_write_sees_new_leader(self, db, artwork, make_user, monkeypatch):
        a, b, c = make_user(), make_user(), make_user()
        artwork_id = _id(artwork)
        bidding.place_bid(db, artwork_id, a["id"], 100)

        swap = bidding._advance_bid_version
        interleaved = []

        def swap_then_bid(db_, artwork_, amount, now):
            swap(db_, artwork_, amount, now)
            if amount == 200:
                with pytest.raises(BidTooLow) as exc:
                    bidding.place_bid(db, artwork_id, c["id"], 105)
                interleaved.append(exc.value.context["minBidAmount"])

        monkeypatch.setattr(bidding, "_advance_bid_version", swap_then_bid)
        bidding.place_bid(db, artwork_id, b["id"], 200)

        assert interleaved == [205]
        assert [o["amount"] for o in db["offer"].find({"artworkId": artwork_id}).sort(bidding.BID_ORDER)] == [200, 100]
        assert db["artwork"].find_one({"_id": artwork["_id"]})["highestBid"] == 200

    def test_failed_offer_write_restores_leader(self, db, artwork, make_user, monkeypatch):
        a, b = make_user(), make_user()
        artwork_id = _id(artwork)
        bidding.place_bid(db, artwork_id, a["id"], 100)

        def duplicate(*args, **kwargs):
            raise DuplicateKeyError("E11000 duplicate key")

        monkeypatch.setattr(bidding, "create_document", duplicate)
        with pytest.raises(BidConflict):
            bidding.place_bid(db, artwork_id, b["id"], 150)

        stored = db["artwork"].find_one({"_id": artwork["_id"]})
        assert stored["highestBid"] == 100
        assert stored["bidVersion"] == 3
        assert db["offer"].count_documents({"artworkId": artwork_id}) == 1

    def test_leader_read_from_offers_when_cache_empty(self, db, artwork, make_user):
        a, b = make_user(), make_user()
        bidding.place_bid(db, _id(artwork), a["id"], 100)
        db["artwork"].update_one({"_id": artwork["_id"]}, {"$set": {"highestBid": None}})

        with pytest.raises(BidTooLow) as exc:
            bidding.place_bid(db, _id(artwork), b["id"], 102)
        assert exc.value.context["minBidAmount"] == 105

        bidding.place_bid(db, _id(artwork), b["id"], 105)
        assert db["artwork"].find_one({"_id": artwork["_id"]})["highestBid"] == 105

    def test_conflict_maps_to_409(self):
        assert BidConflict("x").status_code == 409


class TestBidsForArtwork:
    def test_ordering_and_stats(self, db, artwork, make_user):
        a, b, c = make_user(), make_user(), make_user()
        bidding.place_bid(db, _id(artwork), a["id"], 100)
        bidding.place_bid(db, _id(artwork), b["id"], 120)
        bidding.place_bid(db, _id(artwork), c["id"], 140)
        bidding.place_bid(db, _id(artwork), a["id"], 160)

        offers, stats = bidding.bids_for_artwork(db, _id(artwork))

        assert [o["amount"] for o in offers] == [160, 140, 120]
        assert stats == {"highestBid": 160, "totalBids": 3, "bidders": 3}
        assert offers[0]["userId"]["userName"] == a["userName"]
        assert "password" not in offers[0]["userId"]

    def test_empty(self, db, artwork):
        offers, stats = bidding.bids_for_artwork(db, _id(artwork))
        assert offers == []
        assert stats == {"highestBid": 0, "totalBids": 0, "bidders": 0}

    def test_snapshot(self, db, artwork, auction, make_user):
        assert bidding.bid_snapshot(db, artwork, auction)["nextMinBid"] == 100
        bidding.place_bid(db, _id(artwork), make_user()["id"], 110)
        snap = bidding.bid_snapshot(db, artwork, auction)
        assert snap == {"currentHighestBid": 110, "nextMinBid": 115, "minIncrement": 5, "totalBids": 1}

    def test_distinct_bidders_keeps_first(self):
        offers = [{"userId": "a", "amount": 3}, {"userId": {"_id": "a"}, "amount": 2}, {"userId": "b", "amount": 1}]
        assert [o["amount"] for o in bidding.distinct_bidders(offers)] == [3, 1]
