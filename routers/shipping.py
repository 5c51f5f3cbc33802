from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends
from pydantic import EmailStr, Field
from pymongo.database import Database

from bidding import winning_offer
from database import get_db, get_document, get_documents, populate, ref_id, serialize, utcnow
from errors import Forbidden, NotFound, ValidationFailed
from logger import logger
from schemas import ArtworkStatus, CamelModel, Role, ShippingAddress, ShippingStatus
from security import CurrentUser, ensure_owner_or_admin, get_current_user, require_roles

router = APIRouter(prefix="/shipping", tags=["shipping"])

STATUS_ORDER = [
    ShippingStatus.PENDING.value,
    ShippingStatus.CONFIRMED.value,
    ShippingStatus.SHIPPED.value,
    ShippingStatus.DELIVERED.value,
]
ARTWORK_FIELDS = ("title", "images", "price", "status")


class ShippingAddressRequest(CamelModel):
    full_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=500)


class ShippingStatusRequest(CamelModel):
    status: Optional[ShippingStatus] = None
    tracking_number: Optional[str] = None


def _verified_win(db: Database, artwork_id: str, user: CurrentUser) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    artwork = get_document(db, "artwork", artwork_id, "Artwork")
    if artwork.get("status") != ArtworkStatus.SOLD.value:
        raise ValidationFailed("Auction has not ended yet")

    winning = winning_offer(db, artwork)
    if not winning:
        raise NotFound("No bids found for this artwork")
    if ref_id(winning["userId"]) != user.id:
        raise Forbidden("You are not the winner of this auction")
    return artwork, winning


def _transition(current: str, new: str) -> None:
    if STATUS_ORDER.index(new) < STATUS_ORDER.index(current):
        raise ValidationFailed(f"Cannot change shipping status from {current} to {new}")


@router.get("/verify/{artwork_id}")
def verify_winner(artwork_id: str, user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    """Confirm the caller won the artwork and may submit a shipping address"""
    artwork, winning = _verified_win(db, artwork_id, user)
    return {
        "success": True,
        "message": "Verified winner",
        "data": {
            "artwork": {
                "id": str(artwork["_id"]),
                "title": artwork.get("title"),
                "images": artwork.get("images"),
                "price": artwork.get("price"),
                "endPrice": artwork.get("endPrice"),
            },
            "winningBid": {"amount": winning["amount"]},
        },
    }


@router.get("")
def my_shipping_addresses(user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    addresses = get_documents(db, "shippingaddress", {"userId": user.id}, sort=[("createdAt", -1)])
    populate(db, addresses, "artworkId", "artwork", ARTWORK_FIELDS)
    return {"success": True, "data": serialize(addresses), "count": len(addresses)}


@router.get("/{artwork_id}")
def get_shipping_address(artwork_id: str, user: CurrentUser = Depends(get_current_user), db: Database = Depends(get_db)):
    address = db["shippingaddress"].find_one({"artworkId": artwork_id, "userId": user.id})
    if not address:
        raise NotFound("Shipping address not found")
    populate(db, [address], "artworkId", "artwork", ARTWORK_FIELDS)
    populate(db, [address], "userId", "user", ("userName", "email"))
    return {"success": True, "data": serialize(address)}


@router.post("/{artwork_id}")
def save_shipping_address(
    artwork_id: str,
    payload: ShippingAddressRequest,
    user: CurrentUser = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """Create or replace the winner's shipping address; it is confirmed on save"""
    _verified_win(db, artwork_id, user)

    current = db["shippingaddress"].find_one({"artworkId": artwork_id, "userId": user.id})
    if current:
        _transition(current.get("status", ShippingStatus.PENDING.value), ShippingStatus.CONFIRMED.value)

    address = ShippingAddress(
        user_id=user.id,
        artwork_id=artwork_id,
        full_name=payload.full_name,
        email=payload.email,
        phone=payload.phone,
        address_line1=payload.address_line1,
        address_line2=payload.address_line2 or "",
        city=payload.city,
        state=payload.state or "",
        postal_code=payload.postal_code,
        country=payload.country,
        notes=payload.notes or "",
        status=ShippingStatus.CONFIRMED,
    ).model_dump(by_alias=True, exclude={"tracking_number", "shipped_at", "delivered_at"})

    now = utcnow()
    db["shippingaddress"].update_one(
        {"artworkId": artwork_id, "userId": user.id},
        {"$set": {**address, "updatedAt": now}, "$setOnInsert": {"createdAt": now}},
        upsert=True,
    )
    saved = db["shippingaddress"].find_one({"artworkId": artwork_id, "userId": user.id})
    logger.info("Shipping address saved for artwork %s by %s", artwork_id, user.id)

    populate(db, [saved], "artworkId", "artwork", ARTWORK_FIELDS)
    populate(db, [saved], "userId", "user", ("userName", "email"))
    return {"success": True, "message": "Shipping address saved successfully", "data": serialize(saved)}


@router.patch("/{address_id}/status")
def update_shipping_status(
    address_id: str,
    payload: ShippingStatusRequest,
    user: CurrentUser = Depends(require_roles(Role.SELLER, Role.ADMIN)),
    db: Database = Depends(get_db),
):
    address = get_document(db, "shippingaddress", address_id, "Shipping address")
    if not user.is_admin:
        artwork = get_document(db, "artwork", address["artworkId"], "Artwork")
        auction = get_document(db, "auction", artwork["auctionId"], "Auction")
        ensure_owner_or_admin(user, auction["artistId"])

    changes: Dict[str, Any] = {}
    if payload.status:
        _transition(address.get("status", ShippingStatus.PENDING.value), payload.status)
        changes["status"] = payload.status
        if payload.status == ShippingStatus.SHIPPED.value:
            changes["shippedAt"] = utcnow()
        elif payload.status == ShippingStatus.DELIVERED.value:
            changes["deliveredAt"] = utcnow()
    if payload.tracking_number:
        changes["trackingNumber"] = payload.tracking_number.strip()

    if changes:
        changes["updatedAt"] = utcnow()
        db["shippingaddress"].update_one({"_id": address["_id"]}, {"$set": changes})
    updated = db["shippingaddress"].find_one({"_id": address["_id"]})
    return {"success": True, "message": "Shipping status updated", "data": serialize(updated)}
