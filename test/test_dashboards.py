import asyncio

from _helper import DRIVER_A, DRIVER_B, SELLER, delivery_in, open_delivery, seeded_store

from delivery_engine import assignment, bids, dashboards, lifecycle
from delivery_engine.delivery_state import DeliveryStatus

S = DeliveryStatus


def _ids(rows):
    return {r["id"] for r in rows}


def test_seller_dashboard_tabs_and_bid_counts():
    async def scenario():
        store = await seeded_store()
        open_one = await open_delivery(store)
        await bids.submit_bid(store, DRIVER_A, open_one.id)
        await bids.submit_bid(store, DRIVER_B, open_one.id)
        on_route = await delivery_in(store, S.ON_ROUTE)
        paid = await delivery_in(store, S.PAID)
        cancelled = await open_delivery(store)
        await lifecycle.cancel_delivery(store, SELLER, cancelled.id)

        tabs = (await dashboards.seller_dashboard(store, SELLER)).unwrap()
        assert _ids(tabs["OPEN"]) == {open_one.id}
        assert tabs["OPEN"][0]["bid_count"] == 2
        assert _ids(tabs["ON_ROUTE"]) == {on_route.id}
        assert _ids(tabs["DELIVERED"]) == {paid.id}
        assert _ids(tabs["CLOSED"]) == {cancelled.id}

        await lifecycle.hide_delivery(store, SELLER, cancelled.id)
        tabs = (await dashboards.seller_dashboard(store, SELLER)).unwrap()
        assert tabs["CLOSED"] == []

    asyncio.run(scenario())


def test_driver_dashboard_splits_requests_from_open_feed():
    async def scenario():
        store = await seeded_store()
        bid_on = await open_delivery(store)
        untouched = await open_delivery(store)
        await bids.submit_bid(store, DRIVER_A, bid_on.id)
        mine = await delivery_in(store, S.ASSIGNED, driver=DRIVER_A)
        someone_elses = await delivery_in(store, S.ASSIGNED, driver=DRIVER_B)

        tabs = (await dashboards.driver_dashboard(store, DRIVER_A)).unwrap()
        assert _ids(tabs["OPEN"]) == {untouched.id}
        assert _ids(tabs["REQUESTS"]) == {bid_on.id}
        assert tabs["REQUESTS"][0]["can_withdraw"] is True
        assert _ids(tabs["ASSIGNED"]) == {mine.id}
        assert someone_elses.id not in _ids(sum(tabs.values(), []))
        assert tabs["ASSIGNED"][0]["pickup_phone"] == "99112233"
        assert "pickup_phone" not in tabs["OPEN"][0]

    asyncio.run(scenario())


def test_blocked_driver_no_longer_sees_seller_listings():
    async def scenario():
        store = await seeded_store()
        d = await open_delivery(store)
        await assignment.assign_driver(store, SELLER, d.id, DRIVER_A.user_id)
        await assignment.release_driver(store, SELLER, d.id, DRIVER_A.user_id, "unreachable")

        tabs_a = (await dashboards.driver_dashboard(store, DRIVER_A)).unwrap()
        tabs_b = (await dashboards.driver_dashboard(store, DRIVER_B)).unwrap()
        assert d.id not in _ids(tabs_a["OPEN"])
        assert d.id in _ids(tabs_b["OPEN"])

    asyncio.run(scenario())


def test_dashboards_check_role():
    async def scenario():
        store = await seeded_store()
        assert (await dashboards.seller_dashboard(store, DRIVER_A)).code == "authorization_error"
        assert (await dashboards.driver_dashboard(store, SELLER)).code == "authorization_error"

    asyncio.run(scenario())
