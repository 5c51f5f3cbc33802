from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from pymongo.database import Database

from database import (
    as_utc,
    create_document,
    get_db,
    get_document,
    get_documents,
    populate,
    serialize,
    update_document,
    utcnow,
)
from errors import Forbidden, ValidationFailed
from logger import logger
from schemas import Auction, CamelModel, Role
from security import CurrentUser, ensure_owner_or_admin, get_current_user, require_roles

router = APIRouter(prefix="/auctions", tags=["auctions"])


class CreateAuctionRequest(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    banner_image_url: Optional[str] = None
    min_increment_default: float = Field(5, ge=1)
    end_date: datetime
    artist_id: Optional[str] = None


class UpdateAuctionRequest(CamelModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    banner_image_url: Optional[str] = None
    min_increment_default: Optional[float] = Field(None, ge=1)


def with_status(auction: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    status = "ended" if now > as_utc(auction["endDate"]) else "live"
    return {**serialize(auction), "status": status}


@router.get("")
def list_auctions(limit: int = 100, db: Database = Depends(get_db)):
    auctions = populate(db, get_documents(db, "auction", {}, limit, sort=[("createdAt", -1)]), "artistId")
    data = [with_status(a) for a in auctions]
    return {"success": True, "data": data, "count": len(data)}


@router.get("/me")
def my_auctions(user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    auctions = get_documents(db, "auction", {"artistId": user.id}, sort=[("createdAt", -1)])
    data = [with_status(a) for a in auctions]
    return {"success": True, "data": data, "count": len(data)}


@router.get("/{auction_id}")
def get_auction(auction_id: str, db: Database = Depends(get_db)):
    auction = get_document(db, "auction", auction_id, "Auction")
    populate(db, [auction], "artistId")
    return {"success": True, "data": with_status(auction)}


@router.get("/{auction_id}/artworks")
def get_auction_artworks(auction_id: str, db: Database = Depends(get_db)):
    get_document(db, "auction", auction_id, "Auction")
    artworks = get_documents(db, "artwork", {"auctionId": auction_id}, sort=[("createdAt", -1)])
    return {"success": True, "data": serialize(artworks), "count": len(artworks)}


@router.post("", status_code=201)
def create_auction(
    payload: CreateAuctionRequest,
    user: CurrentUser = Depends(require_roles(Role.SELLER, Role.ADMIN)),
    db: Database = Depends(get_db),
):
    if payload.end_date <= utcnow():
        raise ValidationFailed("End date must be in the future")

    artist_id = payload.artist_id or user.id
    if artist_id != user.id and not user.is_admin:
        raise Forbidden("Sellers can only create their own auctions")
    get_document(db, "user", artist_id, "User")

    auction = Auction(
        title=payload.title,
        description=payload.description,
        banner_image_url=payload.banner_image_url,
        min_increment_default=payload.min_increment_default,
        end_date=payload.end_date,
        artist_id=artist_id,
    )
    auction_id = create_document(db, "auction", auction)
    logger.info("Auction created: %s by %s", auction_id, artist_id)
    return {
        "success": True,
        "data": serialize(get_document(db, "auction", auction_id, "Auction")),
        "message": "Auction created successfully",
    }


@router.put("/{auction_id}")
def update_auction(
    auction_id: str,
    payload: UpdateAuctionRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    auction = get_document(db, "auction", auction_id, "Auction")
    ensure_owner_or_admin(user, auction["artistId"])

    changes = payload.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    updated = update_document(db, "auction", auction_id, changes, "Auction")
    populate(db, [updated], "artistId")
    return {"success": True, "data": serialize(updated), "message": "Auction updated successfully"}


@router.delete("/{auction_id}")
def delete_auction(
    auction_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    auction = get_document(db, "auction", auction_id, "Auction")
    ensure_owner_or_admin(user, auction["artistId"])

    db["auction"].delete_one({"_id": auction["_id"]})
    removed = db["artwork"].delete_many({"auctionId": auction_id}).deleted_count
    logger.info("Auction %s deleted with %d artworks", auction_id, removed)
    return {"success": True, "message": "Auction and related artworks deleted successfully"}
