"""
Database Schemas for the artRise auction marketplace

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercased class name by convention (e.g., ShippingAddress -> "shippingaddress").
Attributes are snake_case in Python and camelCase in documents and JSON.
References to other documents are stored as id strings.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from database import as_utc


class Role(str, Enum):
    ADMIN = "admin"
    BUYER = "buyer"
    SELLER = "seller"


class ArtworkStatus(str, Enum):
    LIVE = "live"
    DRAFT = "draft"
    ENDED = "ended"
    CANCELED = "canceled"
    SOLD = "sold"
    UNSOLD = "unsold"


SETTLED_STATUSES = (ArtworkStatus.SOLD, ArtworkStatus.UNSOLD)


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class ShippingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)

    @field_validator("*", mode="after")
    @classmethod
    def _naive_utc(cls, value):
        if isinstance(value, datetime):
            return as_utc(value)
        return value


class User(CamelModel):
    """Registered account; the password field only ever holds a bcrypt hash"""
    user_name: str = Field(..., min_length=3, max_length=30, description="Unique display name")
    email: EmailStr = Field(..., description="Unique email address")
    password: str = Field(..., description="bcrypt hash")
    role: Role = Field(Role.BUYER, description="admin | buyer | seller")
    avatar_url: Optional[str] = Field(None, description="Avatar image URL")
    is_verified: bool = Field(False, description="Email address confirmed")
    verification_token: Optional[str] = Field(None, description="Pending email verification token")
    verification_token_expires: Optional[datetime] = Field(None, description="Verification token expiry")


class Auction(CamelModel):
    """An artist's auction grouping several artworks"""
    title: str = Field(..., description="Auction title")
    description: str = Field(..., description="Auction description")
    banner_image_url: Optional[str] = Field(None, description="Banner image")
    min_increment_default: float = Field(5, ge=1, description="Minimum raise over the leading bid")
    end_date: datetime = Field(..., description="When the auction ends")
    artist_id: str = Field(..., description="Owning seller (user id)")


class Artwork(CamelModel):
    """A single lot within an auction"""
    auction_id: str = Field(..., description="Parent auction id")
    title: str = Field(..., description="Artwork title")
    description: str = Field(..., description="Artwork description")
    price: float = Field(..., ge=0, description="List price")
    currency: str = Field(..., description="ISO currency code, e.g. EUR")
    images: str = Field(..., description="Image URL")
    start_price: float = Field(..., ge=0, description="Opening price")
    end_price: Optional[float] = Field(None, ge=0, description="Settled price")
    status: ArtworkStatus = Field(ArtworkStatus.LIVE, description="live | draft | ended | canceled | sold | unsold")
    end_date: datetime = Field(..., description="When bidding closes")
    ending_soon_notified: bool = Field(False, description="Ending-soon emails already sent")
    highest_bid: Optional[float] = Field(None, ge=0, description="Cached leading bid")
    bid_version: int = Field(0, ge=0, description="Incremented on every accepted bid")


class BidHistoryEntry(CamelModel):
    amount: float = Field(..., ge=0)
    timestamp: datetime


class Offer(CamelModel):
    """A bidder's standing bid on one artwork"""
    artwork_id: str = Field(..., description="Artwork id")
    user_id: str = Field(..., description="Bidder id")
    amount: float = Field(..., ge=0, description="Current bid amount")
    bid_history: List[BidHistoryEntry] = Field(default_factory=list, description="Accepted amounts over time")


class Order(CamelModel):
    """A settled sale"""
    artwork_id: str = Field(..., description="Artwork id")
    seller_id: str = Field(..., description="Seller id")
    buyer_id: Optional[str] = Field(None, description="Winning bidder id")
    amount: float = Field(..., ge=0, description="Sale amount")
    currency: Optional[str] = Field(None, description="Currency code")
    status: OrderStatus = Field(OrderStatus.PENDING, description="pending | paid | failed | refunded")
    session_id: Optional[str] = Field(None, description="External checkout session")
    payment_id: Optional[str] = Field(None, description="External payment reference")
    paid_at: Optional[datetime] = Field(None, description="Payment time")


class Payment(CamelModel):
    user_id: str = Field(..., description="Paying user id")
    artwork_id: str = Field(..., description="Artwork id")
    amount: float = Field(..., ge=0, description="Amount paid")


class ShippingAddress(CamelModel):
    """Where the winner wants the artwork delivered"""
    user_id: str = Field(..., description="Winning user id")
    artwork_id: str = Field(..., description="Artwork id")
    full_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    address_line1: str = Field(..., min_length=1)
    address_line2: str = ""
    city: str = Field(..., min_length=1)
    state: str = ""
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    notes: str = Field("", max_length=500)
    status: ShippingStatus = Field(ShippingStatus.PENDING, description="pending | confirmed | shipped | delivered")
    tracking_number: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    @field_validator(
        "full_name", "phone", "address_line1", "address_line2", "city", "state", "postal_code", "country", "notes",
        mode="before",
    )
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value
