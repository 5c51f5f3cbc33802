"""
Bidding engine.

A bidder holds at most one offer per artwork; raising a bid mutates that
offer and appends to its bidHistory. The minimum acceptable amount is the
artwork's start price while nobody has bid, and the leading bid plus the
auction's minimum increment afterwards.

The leading amount is read from the artwork document itself (highestBid),
and every accepted bid swaps in its amount and advances bidVersion with a
compare-and-swap against the highestBid and version read before validation.
Two bids validated against the same leading bid cannot both be recorded, and
a bid read after the swap already sees the new leader even before its offer
is written. The loser gets BidConflict and is expected to re-read and retry.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import settings
from database import as_utc, create_document, populate, ref_id, utcnow
from errors import (
    ArtworkNotFound,
    AuctionEnded,
    AuctionNotFound,
    BidConflict,
    BidNotAboveOwn,
    BidTooLow,
    ValidationFailed,
)
from logger import logger
from schemas import ArtworkStatus, BidHistoryEntry, Offer

BID_ORDER = [("amount", DESCENDING), ("createdAt", ASCENDING)]


@dataclass
class BidOutcome:
    offer: Dict[str, Any]
    artwork: Dict[str, Any]
    auction: Dict[str, Any]
    is_new_bid: bool
    message: str
    stats: Dict[str, float] = field(default_factory=dict)


def min_increment(auction: Dict[str, Any]) -> float:
    return float(auction.get("minIncrementDefault") or settings.DEFAULT_MIN_INCREMENT)


def minimum_bid(current_highest: Optional[float], start_price: float, increment: float) -> float:
    if current_highest is None:
        return float(start_price)
    return float(current_highest) + increment


def is_open(artwork: Dict[str, Any], now: datetime) -> bool:
    return artwork.get("status") == ArtworkStatus.LIVE.value and now < as_utc(artwork["endDate"])


def load_artwork_and_auction(db: Database, artwork_id: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    artwork = None
    if ObjectId.is_valid(artwork_id):
        artwork = db["artwork"].find_one({"_id": ObjectId(artwork_id)})
    if not artwork:
        raise ArtworkNotFound(artwork_id)

    auction_id = artwork.get("auctionId")
    auction = None
    if auction_id and ObjectId.is_valid(auction_id):
        auction = db["auction"].find_one({"_id": ObjectId(auction_id)})
    if not auction:
        raise AuctionNotFound(auction_id)
    return artwork, auction


def highest_offer(db: Database, artwork_id: str) -> Optional[Dict[str, Any]]:
    return db["offer"].find_one({"artworkId": artwork_id}, sort=BID_ORDER)


def leading_amount(db: Database, artwork: Dict[str, Any]) -> Optional[float]:
    """Leading bid as cached on the artwork document"""
    if artwork.get("highestBid") is not None:
        return float(artwork["highestBid"])
    # documents written before the cache existed
    leader = highest_offer(db, str(artwork["_id"]))
    return float(leader["amount"]) if leader else None


def winning_offer(db: Database, artwork: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Winner of a sold artwork as recorded at settlement: {userId, amount}"""
    if artwork.get("status") != ArtworkStatus.SOLD.value:
        return None
    artwork_id = str(artwork["_id"])
    order = db["order"].find_one({"artworkId": artwork_id, "buyerId": {"$ne": None}})
    if order:
        return {"userId": order["buyerId"], "amount": order["amount"]}
    if artwork.get("endPrice") is None:
        return None
    offer = db["offer"].find_one({"artworkId": artwork_id, "amount": artwork["endPrice"]}, sort=BID_ORDER)
    if not offer:
        return None
    return {"userId": offer["userId"], "amount": offer["amount"]}


def _version_filter(artwork: Dict[str, Any]) -> Dict[str, Any]:
    if "bidVersion" in artwork:
        return {"bidVersion": artwork["bidVersion"]}
    return {"bidVersion": {"$exists": False}}


def _advance_bid_version(db: Database, artwork: Dict[str, Any], amount: float, now: datetime) -> None:
    """Record `amount` as the leading bid if the artwork is unchanged since it was read"""
    result = db["artwork"].update_one(
        {
            "_id": artwork["_id"],
            "status": ArtworkStatus.LIVE.value,
            "highestBid": artwork.get("highestBid"),
            **_version_filter(artwork),
        },
        {"$set": {"highestBid": amount, "updatedAt": now}, "$inc": {"bidVersion": 1}},
    )
    if result.matched_count == 0:
        artwork_id = str(artwork["_id"])
        fresh = db["artwork"].find_one({"_id": artwork["_id"]})
        if not fresh or not is_open(fresh, now):
            raise AuctionEnded(artwork_id)
        logger.warning("Bid conflict on artwork %s (version %s moved)", artwork_id, artwork.get("bidVersion"))
        raise BidConflict(artwork_id)


def _rederive_highest_bid(db: Database, artwork: Dict[str, Any], now: datetime) -> None:
    """Rebuild the cache from stored offers after a bid that bumped it was not written"""
    leader = highest_offer(db, str(artwork["_id"]))
    db["artwork"].update_one(
        {"_id": artwork["_id"], "bidVersion": artwork.get("bidVersion", 0) + 1},
        {"$set": {"highestBid": leader["amount"] if leader else None, "updatedAt": now}, "$inc": {"bidVersion": 1}},
    )


def place_bid(db: Database, artwork_id: str, user_id: str, amount: float, now: Optional[datetime] = None) -> BidOutcome:
    """Place a first bid or raise an existing one"""
    now = now or utcnow()
    if amount is None or float(amount) <= 0:
        raise ValidationFailed("amount must be a positive number")
    amount = float(amount)

    artwork, auction = load_artwork_and_auction(db, artwork_id)
    if not is_open(artwork, now):
        raise AuctionEnded(artwork_id)

    existing = db["offer"].find_one({"artworkId": artwork_id, "userId": user_id})
    if existing and amount <= existing["amount"]:
        raise BidNotAboveOwn(existing["amount"])

    increment = min_increment(auction)
    current_highest = leading_amount(db, artwork)
    min_bid = minimum_bid(current_highest, artwork.get("startPrice", 0), increment)
    if amount < min_bid:
        raise BidTooLow(min_bid, current_highest or 0, increment)

    if artwork.get("highestBid") is None and current_highest is not None:
        # pin the amount validated above into the cache the swap checks
        db["artwork"].update_one(
            {"_id": artwork["_id"], "highestBid": None, **_version_filter(artwork)},
            {"$set": {"highestBid": current_highest}},
        )
        artwork = {**artwork, "highestBid": current_highest}

    _advance_bid_version(db, artwork, amount, now)

    entry = BidHistoryEntry(amount=amount, timestamp=now).model_dump(by_alias=True)
    if existing:
        db["offer"].update_one(
            {"_id": existing["_id"]},
            {"$set": {"amount": amount, "updatedAt": now}, "$push": {"bidHistory": entry}},
        )
        offer = db["offer"].find_one({"_id": existing["_id"]})
        is_new_bid = False
        message = "Bid increased successfully"
    else:
        doc = Offer(artwork_id=artwork_id, user_id=user_id, amount=amount).model_dump(by_alias=True)
        doc["bidHistory"] = [entry]
        doc["createdAt"] = now
        try:
            offer_id = create_document(db, "offer", doc)
        except DuplicateKeyError:
            _rederive_highest_bid(db, artwork, now)
            raise BidConflict(artwork_id)
        offer = db["offer"].find_one({"_id": ObjectId(offer_id)})
        is_new_bid = True
        message = "Bid placed successfully"

    logger.info("Bid accepted: artwork=%s user=%s amount=%.2f new=%s", artwork_id, user_id, amount, is_new_bid)
    return BidOutcome(
        offer=offer,
        artwork=artwork,
        auction=auction,
        is_new_bid=is_new_bid,
        message=message,
        stats={
            "currentHighestBid": amount,
            "nextMinBid": amount + increment,
            "minIncrement": increment,
        },
    )


def bids_for_artwork(db: Database, artwork_id: str) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    """All offers for an artwork, leading bid first, with aggregate stats"""
    offers = list(db["offer"].find({"artworkId": artwork_id}).sort(BID_ORDER))
    stats = {
        "highestBid": offers[0]["amount"] if offers else 0,
        "totalBids": len(offers),
        "bidders": len({ref_id(o["userId"]) for o in offers}),
    }
    populate(db, offers, "userId")
    return offers, stats


def bid_snapshot(db: Database, artwork: Dict[str, Any], auction: Dict[str, Any]) -> Dict[str, Any]:
    artwork_id = str(artwork["_id"])
    increment = min_increment(auction)
    current_highest = leading_amount(db, artwork)
    return {
        "currentHighestBid": current_highest or 0,
        "nextMinBid": minimum_bid(current_highest, artwork.get("startPrice", 0), increment),
        "minIncrement": increment,
        "totalBids": db["offer"].count_documents({"artworkId": artwork_id}),
    }


def distinct_bidders(offers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """First offer per user, in the given order"""
    seen = set()
    result = []
    for offer in offers:
        uid = ref_id(offer["userId"])
        if uid in seen:
            continue
        seen.add(uid)
        result.append(offer)
    return result
