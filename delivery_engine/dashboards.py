"""
Seller and driver dashboards: rows grouped into tabs, hidden rows dropped, every row passed
through the disclosure projection for the viewer.
"""
from delivery_engine.bids import is_bid_actionable, my_bids
from delivery_engine.delivery_state import (
    DRIVER_TABS,
    SELLER_TABS,
    DeliveryStatus,
    driver_tab_for_status,
    seller_tab_for_status,
)
from delivery_engine.disclosure import project
from delivery_engine.errors import AuthorizationError, Outcome
from delivery_engine.guards import reject
from delivery_engine.models import Actor, Role
from delivery_engine.store import DeliveryStore


async def seller_dashboard(store: DeliveryStore, actor: Actor) -> Outcome[dict[str, list[dict]]]:
    if actor.role is not Role.SELLER:
        return reject("seller_dashboard", AuthorizationError("seller dashboard is for sellers"))

    deliveries = await store.list_deliveries(seller_id=actor.user_id)
    hidden = await store.hidden_ids(Role.SELLER, [d.id for d in deliveries])
    visible = [d for d in deliveries if d.id not in hidden]
    bid_counts = await store.count_bids(d.id for d in visible)

    tabs: dict[str, list[dict]] = {tab: [] for tab in SELLER_TABS}
    for d in visible:
        row = project(d, Role.SELLER, actor.user_id)
        row["bid_count"] = bid_counts.get(d.id, 0)
        tabs[seller_tab_for_status(d.status)].append(row)
    return Outcome.success(tabs)


async def driver_dashboard(store: DeliveryStore, actor: Actor) -> Outcome[dict[str, list[dict]]]:
    """
    OPEN: every open delivery the driver has not bid on (minus sellers who blocked them).
    REQUESTS: open deliveries carrying the driver's bid.
    Remaining tabs: deliveries this driver was chosen for.
    """
    if actor.role is not Role.DRIVER:
        return reject("driver_dashboard", AuthorizationError("driver dashboard is for drivers"))

    open_rows = await store.list_deliveries(statuses=[DeliveryStatus.OPEN])
    mine = await store.list_deliveries(chosen_driver_id=actor.user_id)
    bids = await my_bids(store, actor)
    blocking = await store.sellers_blocking(actor.user_id)
    hidden = await store.hidden_ids(Role.DRIVER, [d.id for d in open_rows + mine])

    tabs: dict[str, list[dict]] = {tab: [] for tab in DRIVER_TABS}
    for d in open_rows:
        if d.id in hidden or d.seller_id in blocking or d.seller_id == actor.user_id:
            continue
        row = project(d, Role.DRIVER, actor.user_id)
        bid = bids.get(d.id)
        row["my_bid_id"] = bid.id if bid else None
        row["can_withdraw"] = bid is not None and is_bid_actionable(d.status)
        tabs["REQUESTS" if bid else "OPEN"].append(row)
    for d in mine:
        if d.id in hidden:
            continue
        tabs[driver_tab_for_status(d.status)].append(project(d, Role.DRIVER, actor.user_id))
    return Outcome.success(tabs)
