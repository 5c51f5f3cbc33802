from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import Field
from pymongo.database import Database

import bidding
from database import delete_document, get_db, get_document, get_documents, populate, serialize
from errors import Forbidden
from notifications import Notifier, get_notifier
from schemas import CamelModel, Role
from security import CurrentUser, get_current_user, require_roles

router = APIRouter(prefix="/offers", tags=["offers"])


class PlaceBidRequest(CamelModel):
    artwork_id: str
    user_id: Optional[str] = None
    amount: float = Field(..., gt=0)


class RaiseBidRequest(CamelModel):
    amount: float = Field(..., gt=0)


def _bid_response(db: Database, outcome: bidding.BidOutcome) -> dict:
    offer = populate(db, [dict(outcome.offer)], "userId")[0]
    return {
        "success": True,
        "offer": serialize(offer),
        "message": outcome.message,
        "isNewBid": outcome.is_new_bid,
        "stats": outcome.stats,
    }


@router.get("")
def list_offers(limit: int = 100, db: Database = Depends(get_db)):
    return serialize(get_documents(db, "offer", {}, limit, sort=[("createdAt", -1)]))


@router.get("/me")
def my_offers(user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    offers = get_documents(db, "offer", {"userId": user.id}, sort=[("createdAt", -1)])
    populate(db, offers, "artworkId", "artwork", ("title", "images", "status", "endDate", "auctionId"))
    return serialize(offers)


@router.get("/artwork/{artwork_id}")
def offers_for_artwork(artwork_id: str, db: Database = Depends(get_db)):
    """Bids on an artwork, leading bid first, with aggregate stats"""
    offers, stats = bidding.bids_for_artwork(db, artwork_id)
    return {"success": True, "offers": serialize(offers), "stats": stats}


@router.get("/{offer_id}")
def get_offer(offer_id: str, db: Database = Depends(get_db)):
    return serialize(get_document(db, "offer", offer_id, "Offer"))


@router.post("", status_code=201)
def create_offer(
    payload: PlaceBidRequest,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """Place a bid, or raise the caller's existing bid on the artwork"""
    bidder_id = payload.user_id or user.id
    if bidder_id != user.id and not user.is_admin:
        raise Forbidden("You can only bid on your own behalf")

    outcome = bidding.place_bid(db, payload.artwork_id, bidder_id, payload.amount)
    background_tasks.add_task(notifier.bid_placed, db, outcome.offer, outcome.artwork, outcome.auction)
    return _bid_response(db, outcome)


@router.put("/{offer_id}")
def raise_offer(
    offer_id: str,
    payload: RaiseBidRequest,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    offer = get_document(db, "offer", offer_id, "Offer")
    if offer["userId"] != user.id and not user.is_admin:
        raise Forbidden("You can only raise your own bids")

    outcome = bidding.place_bid(db, offer["artworkId"], offer["userId"], payload.amount)
    background_tasks.add_task(notifier.bid_placed, db, outcome.offer, outcome.artwork, outcome.auction)
    return _bid_response(db, outcome)


@router.delete("/{offer_id}")
def delete_offer(
    offer_id: str,
    _: CurrentUser = Depends(require_roles(Role.ADMIN)),
    db: Database = Depends(get_db),
):
    delete_document(db, "offer", offer_id, "Offer")
    return {"message": "Offer deleted"}
