import asyncio

from _helper import DRIVER_A, DRIVER_B, OTHER_SELLER, SELLER, delivery_in, open_delivery, seeded_store

from delivery_engine import bids, lifecycle
from delivery_engine.delivery_state import DeliveryStatus
from delivery_engine.disclosure import (
    DRIVER_CONTACT_FIELDS,
    DROPOFF_FIELDS,
    PICKUP_FIELDS,
    PUBLIC_FIELDS,
    project,
    visible_fields,
)
from delivery_engine.models import Delivery, Role

S = DeliveryStatus


def _delivery(status: DeliveryStatus, driver: str | None = "driver-a") -> Delivery:
    return Delivery(
        id="d1",
        seller_id="seller-1",
        status=status,
        chosen_driver_id=driver if status not in (S.OPEN, S.CANCELLED) else None,
        pickup_district="Sukhbaatar",
        dropoff_district="Bayangol",
        from_address="Peace Ave 12",
        to_address="Zaisan 7",
        pickup_phone="99112233",
        dropoff_phone="88001122",
        price=10000,
    )


def test_open_listing_is_coarse_for_everyone():
    d = _delivery(S.OPEN)
    for role, viewer in ((Role.DRIVER, "driver-a"), (Role.SELLER, "seller-1"), (Role.SELLER, "seller-2")):
        fields = visible_fields(d, role, viewer)
        assert not fields & (PICKUP_FIELDS | DROPOFF_FIELDS | DRIVER_CONTACT_FIELDS)
        assert {"pickup_district", "dropoff_district", "price", "note"} <= fields


def test_owner_sees_fine_fields_only_once_a_driver_is_bound():
    assert "from_address" not in visible_fields(_delivery(S.OPEN), Role.SELLER, "seller-1")
    assert "from_address" not in visible_fields(_delivery(S.CANCELLED), Role.SELLER, "seller-1")
    for status in (S.ASSIGNED, S.ON_ROUTE, S.CLOSED):
        assert PICKUP_FIELDS | DROPOFF_FIELDS <= visible_fields(_delivery(status), Role.SELLER, "seller-1")


def test_assigned_driver_sees_pickup_only():
    fields = visible_fields(_delivery(S.ASSIGNED), Role.DRIVER, "driver-a")
    assert PICKUP_FIELDS <= fields
    assert {"seller_name", "seller_phone"} <= fields
    assert not fields & DROPOFF_FIELDS


def test_dropoff_revealed_after_pickup():
    for status in (S.ON_ROUTE, S.DELIVERED, S.PAID, S.CLOSED, S.DISPUTE):
        fields = visible_fields(_delivery(status), Role.DRIVER, "driver-a")
        assert PICKUP_FIELDS <= fields
        assert DROPOFF_FIELDS <= fields


def test_visibility_never_shrinks_for_assigned_driver():
    path = [S.OPEN, S.ASSIGNED, S.ON_ROUTE, S.DELIVERED, S.PAID, S.CLOSED]
    seen = frozenset()
    for status in path:
        fields = visible_fields(_delivery(status), Role.DRIVER, "driver-a")
        assert seen <= fields, status
        seen = fields


def test_unchosen_driver_reverts_to_coarse():
    for status in (S.ASSIGNED, S.ON_ROUTE, S.DELIVERED, S.CLOSED):
        assert visible_fields(_delivery(status), Role.DRIVER, "driver-b") == PUBLIC_FIELDS


def test_seller_sees_driver_contact_after_assignment():
    assert DRIVER_CONTACT_FIELDS <= visible_fields(_delivery(S.ASSIGNED), Role.SELLER, "seller-1")
    assert visible_fields(_delivery(S.ASSIGNED), Role.SELLER, "seller-2") == PUBLIC_FIELDS


def test_legacy_returned_status_is_readable():
    d = _delivery(S.RETURNED, driver=None)
    assert visible_fields(d, Role.DRIVER, "driver-a") == PUBLIC_FIELDS
    assert project(d, Role.SELLER, "seller-1")["status"] == "RETURNED"


def test_project_drops_hidden_values():
    row = project(_delivery(S.ASSIGNED), Role.DRIVER, "driver-a")
    assert row["from_address"] == "Peace Ave 12"
    assert row["pickup_phone"] == "99112233"
    assert "to_address" not in row
    assert "dropoff_phone" not in row


def test_get_delivery_reveals_counterparts():
    async def scenario():
        store = await seeded_store()
        d = await delivery_in(store, S.ASSIGNED)

        as_driver = (await lifecycle.get_delivery(store, DRIVER_A, d.id)).value
        assert as_driver["seller_phone"] == "99112233"
        assert as_driver["seller_name"] == "Saraa"

        as_seller = (await lifecycle.get_delivery(store, SELLER, d.id)).value
        assert as_seller["driver_phone"] == "95550001"

        as_other = (await lifecycle.get_delivery(store, DRIVER_B, d.id)).value
        assert "from_address" not in as_other
        assert "seller_phone" not in as_other

        as_stranger = (await lifecycle.get_delivery(store, OTHER_SELLER, d.id)).value
        assert "driver_phone" not in as_stranger

    asyncio.run(scenario())


def test_bidder_view_on_open_delivery():
    async def scenario():
        store = await seeded_store()
        d = await open_delivery(store)
        await bids.submit_bid(store, DRIVER_A, d.id)
        row = (await lifecycle.get_delivery(store, DRIVER_A, d.id)).value
        assert "pickup_phone" not in row
        assert row["pickup_district"] == "Sukhbaatar"

    asyncio.run(scenario())
