"""
Rows the engine reads and writes, plus the input and session types passed into operations.
"""
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from delivery_engine.delivery_state import DeliveryStatus, parse_status


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    SELLER = "seller"
    DRIVER = "driver"


class Actor(BaseModel):
    """Who is acting. Passed explicitly to every operation."""
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    role: Role

    @classmethod
    def seller(cls, user_id: str) -> "Actor":
        return cls(user_id=user_id, role=Role.SELLER)

    @classmethod
    def driver(cls, user_id: str) -> "Actor":
        return cls(user_id=user_id, role=Role.DRIVER)


class Delivery(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    seller_id: str
    status: DeliveryStatus = DeliveryStatus.OPEN
    chosen_driver_id: str | None = None

    # coarse route, always visible
    pickup_district: str | None = None
    pickup_subdistrict: str | None = None
    dropoff_district: str | None = None
    dropoff_subdistrict: str | None = None

    # fine route, gated by disclosure
    from_address: str | None = None
    to_address: str | None = None
    pickup_lat: float | None = None
    pickup_lng: float | None = None
    dropoff_lat: float | None = None
    dropoff_lng: float | None = None
    pickup_phone: str | None = None
    dropoff_phone: str | None = None

    price: int | None = None  # None = negotiable
    note: str | None = None
    delivery_type: str | None = None

    seller_marked_paid: bool = False
    driver_confirmed_payment: bool = False
    dispute_reason: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
    on_route_at: datetime | None = None
    closed_at: datetime | None = None
    dispute_opened_at: datetime | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _read_status(cls, v):
        return parse_status(v)


class Bid(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    delivery_id: str
    driver_id: str
    created_at: datetime = Field(default_factory=utcnow)


class DriverProfile(BaseModel):
    id: str
    name: str | None = None
    phone: str | None = None
    avatar_url: str | None = None


class SellerProfile(BaseModel):
    id: str
    name: str | None = None
    phone: str | None = None


class BidView(BaseModel):
    """Bid joined with the bidder's public profile, as the seller sees it."""
    id: str
    delivery_id: str
    driver_id: str
    created_at: datetime
    driver: DriverProfile | None = None
    blocked: bool = False


class Rating(BaseModel):
    delivery_id: str
    driver_id: str
    stars: int = Field(..., ge=1, le=5)
    comment: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class NewDelivery(BaseModel):
    """Seller input for a new delivery."""
    pickup_district: str = Field(..., min_length=1)
    pickup_subdistrict: str | None = None
    dropoff_district: str = Field(..., min_length=1)
    dropoff_subdistrict: str | None = None

    from_address: str = Field(..., min_length=1)
    to_address: str = Field(..., min_length=1)
    pickup_lat: float | None = Field(default=None, ge=-90, le=90)
    pickup_lng: float | None = Field(default=None, ge=-180, le=180)
    dropoff_lat: float | None = Field(default=None, ge=-90, le=90)
    dropoff_lng: float | None = Field(default=None, ge=-180, le=180)
    pickup_phone: str | None = None
    dropoff_phone: str = Field(..., min_length=1)

    price: int | None = Field(default=None, ge=0)
    note: str | None = None
    delivery_type: str | None = None

    @field_validator(
        "pickup_district", "dropoff_district", "from_address", "to_address", "dropoff_phone",
        mode="before",
    )
    @classmethod
    def _strip_required(cls, v):
        return v.strip() if isinstance(v, str) else v
