"""
Which delivery fields a viewer may see, as a pure function of (status, role, viewer).
Evaluated on every read; nothing here is cached.
"""
from typing import Any

from delivery_engine.delivery_state import DRIVER_BOUND_STATUSES, PICKED_UP_STATUSES
from delivery_engine.models import Delivery, DriverProfile, Role, SellerProfile

PUBLIC_FIELDS = frozenset({
    "id",
    "status",
    "pickup_district",
    "pickup_subdistrict",
    "dropoff_district",
    "dropoff_subdistrict",
    "price",
    "note",
    "delivery_type",
    "created_at",
})

PICKUP_FIELDS = frozenset({"from_address", "pickup_lat", "pickup_lng", "pickup_phone"})
DROPOFF_FIELDS = frozenset({"to_address", "dropoff_lat", "dropoff_lng", "dropoff_phone"})

# Lifecycle bookkeeping both parties of an assignment see
PARTY_FIELDS = frozenset({
    "seller_id",
    "chosen_driver_id",
    "on_route_at",
    "closed_at",
    "seller_marked_paid",
    "driver_confirmed_payment",
    "dispute_reason",
    "dispute_opened_at",
})

SELLER_CONTACT_FIELDS = frozenset({"seller_name", "seller_phone"})
DRIVER_CONTACT_FIELDS = frozenset({"driver_name", "driver_phone", "driver_avatar_url"})


def visible_fields(delivery: Delivery, viewer_role: Role, viewer_id: str | None) -> frozenset[str]:
    status = delivery.status

    if viewer_role is Role.SELLER:
        if viewer_id != delivery.seller_id:
            return PUBLIC_FIELDS
        # an open listing shows the same coarse card to everyone, owner included
        if status not in DRIVER_BOUND_STATUSES or not delivery.chosen_driver_id:
            return PUBLIC_FIELDS | PARTY_FIELDS
        return PUBLIC_FIELDS | PARTY_FIELDS | PICKUP_FIELDS | DROPOFF_FIELDS | DRIVER_CONTACT_FIELDS

    is_chosen = viewer_id is not None and viewer_id == delivery.chosen_driver_id
    if not is_chosen or status not in DRIVER_BOUND_STATUSES:
        # bidders who were not picked fall back to coarse information
        return PUBLIC_FIELDS

    fields = PUBLIC_FIELDS | PARTY_FIELDS | PICKUP_FIELDS | SELLER_CONTACT_FIELDS
    if status in PICKED_UP_STATUSES:
        fields |= DROPOFF_FIELDS
    return fields


def project(
    delivery: Delivery,
    viewer_role: Role,
    viewer_id: str | None,
    *,
    seller: SellerProfile | None = None,
    driver: DriverProfile | None = None,
) -> dict[str, Any]:
    """Delivery as the viewer may see it. Contact fields come from the profiles when supplied."""
    allowed = visible_fields(delivery, viewer_role, viewer_id)
    row = delivery.model_dump(mode="json")
    if seller is not None:
        row["seller_name"] = seller.name
        row["seller_phone"] = seller.phone
    if driver is not None and driver.id == delivery.chosen_driver_id:
        row["driver_name"] = driver.name
        row["driver_phone"] = driver.phone
        row["driver_avatar_url"] = driver.avatar_url
    return {k: v for k, v in row.items() if k in allowed}
