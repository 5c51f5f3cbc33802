from datetime import datetime
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends
from pydantic import Field
from pymongo.database import Database

import bidding
from database import create_document, get_db, get_document, get_documents, serialize, update_document, utcnow
from errors import ValidationFailed
from logger import logger
from schemas import SETTLED_STATUSES, Artwork, ArtworkStatus, CamelModel, Role
from security import CurrentUser, ensure_owner_or_admin, get_current_user, require_roles

router = APIRouter(prefix="/artworks", tags=["artworks"])

# Statuses a seller may set by hand; sold/unsold come only from settlement.
MANUAL_STATUSES = (ArtworkStatus.LIVE, ArtworkStatus.DRAFT, ArtworkStatus.CANCELED)


class CreateArtworkRequest(CamelModel):
    auction_id: str
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    currency: str = Field(..., min_length=1)
    images: str = Field(..., min_length=1)
    start_price: float = Field(..., gt=0)
    status: ArtworkStatus = ArtworkStatus.LIVE
    end_date: Optional[datetime] = None


class UpdateArtworkRequest(CamelModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=1)
    images: Optional[str] = Field(None, min_length=1)
    start_price: Optional[float] = Field(None, gt=0)
    status: Optional[ArtworkStatus] = None


def _check_manual_status(status: Optional[str]) -> None:
    if status is not None and status not in [s.value for s in MANUAL_STATUSES]:
        raise ValidationFailed(f"Status '{status}' can only be set by auction settlement")


@router.get("")
def list_artworks(
    status: Optional[ArtworkStatus] = None,
    auction_id: Optional[str] = None,
    limit: int = 100,
    db: Database = Depends(get_db),
):
    filter_dict = {}
    if status:
        filter_dict["status"] = status.value
    if auction_id:
        filter_dict["auctionId"] = auction_id
    return serialize(get_documents(db, "artwork", filter_dict, limit, sort=[("endDate", 1)]))


@router.get("/{artwork_id}")
def get_artwork(artwork_id: str, db: Database = Depends(get_db)):
    """Artwork with its current bidding snapshot"""
    artwork = get_document(db, "artwork", artwork_id, "Artwork")
    data = serialize(artwork)
    auction_id = artwork.get("auctionId")
    auction = db["auction"].find_one({"_id": ObjectId(auction_id)}) if ObjectId.is_valid(auction_id or "") else None
    if auction:
        data["bidding"] = bidding.bid_snapshot(db, artwork, auction)
    return data


@router.post("", status_code=201)
def create_artwork(
    payload: CreateArtworkRequest,
    user: CurrentUser = Depends(require_roles(Role.SELLER, Role.ADMIN)),
    db: Database = Depends(get_db),
):
    auction = get_document(db, "auction", payload.auction_id, "Auction")
    ensure_owner_or_admin(user, auction["artistId"], "You can only add artworks to your own auctions")
    _check_manual_status(payload.status)

    end_date = payload.end_date or auction["endDate"]
    if end_date <= utcnow():
        raise ValidationFailed("End date must be in the future")

    artwork = Artwork(
        auction_id=payload.auction_id,
        title=payload.title,
        description=payload.description,
        price=payload.price,
        currency=payload.currency.upper(),
        images=payload.images,
        start_price=payload.start_price,
        status=payload.status,
        end_date=end_date,
    )
    artwork_id = create_document(db, "artwork", artwork)
    logger.info("Artwork %s added to auction %s", artwork_id, payload.auction_id)
    return serialize(get_document(db, "artwork", artwork_id, "Artwork"))


@router.put("/{artwork_id}")
def update_artwork(
    artwork_id: str,
    payload: UpdateArtworkRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    artwork = get_document(db, "artwork", artwork_id, "Artwork")
    auction = get_document(db, "auction", artwork["auctionId"], "Auction")
    ensure_owner_or_admin(user, auction["artistId"])

    if artwork.get("status") in [s.value for s in SETTLED_STATUSES]:
        raise ValidationFailed("Settled artworks cannot be modified")

    changes = payload.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    _check_manual_status(changes.get("status"))
    if "startPrice" in changes and db["offer"].count_documents({"artworkId": artwork_id}):
        raise ValidationFailed("Start price cannot change once bids exist")
    if "currency" in changes:
        changes["currency"] = changes["currency"].upper()

    return serialize(update_document(db, "artwork", artwork_id, changes, "Artwork"))


@router.delete("/{artwork_id}")
def delete_artwork(
    artwork_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    artwork = get_document(db, "artwork", artwork_id, "Artwork")
    auction = get_document(db, "auction", artwork["auctionId"], "Auction")
    ensure_owner_or_admin(user, auction["artistId"])

    db["artwork"].delete_one({"_id": artwork["_id"]})
    return {"message": "Artwork deleted"}
