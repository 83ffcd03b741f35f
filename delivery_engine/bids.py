"""
Bid ledger: drivers record interest in OPEN deliveries. A bid never mutates its delivery and
never decides who is assigned; the (delivery_id, driver_id) uniqueness lives in the store.
"""
import logging
import uuid

from delivery_engine.delivery_state import DeliveryStatus
from delivery_engine.errors import (
    AuthorizationError,
    DuplicateBid,
    NotFound,
    Outcome,
    StatusConflict,
)
from delivery_engine.guards import reject
from delivery_engine.metrics import bids_submitted_total, bids_withdrawn_total
from delivery_engine.models import Actor, Bid, BidView, Role
from delivery_engine.store import DeliveryStore

logger = logging.getLogger(__name__)


async def _closed_reason(store: DeliveryStore, delivery_id: str):
    delivery = await store.get_delivery(delivery_id)
    if delivery is None:
        return NotFound(f"delivery {delivery_id} not found", delivery_id=delivery_id)
    return StatusConflict(
        f"delivery {delivery_id} is {delivery.status.value}; bids are only taken while OPEN",
        current_status=delivery.status.value,
        delivery_id=delivery_id,
    )


async def submit_bid(store: DeliveryStore, actor: Actor, delivery_id: str) -> Outcome[Bid]:
    if actor.role is not Role.DRIVER:
        return reject("submit_bid", AuthorizationError("only drivers can bid", delivery_id=delivery_id))

    delivery = await store.get_delivery(delivery_id)
    if delivery is None:
        return reject("submit_bid", NotFound(f"delivery {delivery_id} not found", delivery_id=delivery_id))
    if delivery.seller_id == actor.user_id:
        return reject("submit_bid", AuthorizationError("cannot bid on your own delivery", delivery_id=delivery_id))
    if await store.is_blocked(delivery.seller_id, actor.user_id):
        return reject("submit_bid", AuthorizationError(
            "seller no longer accepts bids from this driver", delivery_id=delivery_id,
        ))

    bid = Bid(id=str(uuid.uuid4()), delivery_id=delivery_id, driver_id=actor.user_id)
    try:
        # conditional on the delivery still being OPEN at insert time
        stored = await store.insert_bid(bid)
    except DuplicateBid as e:
        e.message = f"driver {actor.user_id} already bid on delivery {delivery_id}"
        return reject("submit_bid", e)
    if stored is None:
        return reject("submit_bid", await _closed_reason(store, delivery_id))

    bids_submitted_total.inc()
    logger.info("Bid stored delivery_id=%s driver_id=%s", delivery_id, actor.user_id)
    return Outcome.success(stored)


async def withdraw_bid(store: DeliveryStore, actor: Actor, delivery_id: str) -> Outcome[None]:
    """A driver retracts their own bid. Only while the delivery is still OPEN."""
    if actor.role is not Role.DRIVER:
        return reject("withdraw_bid", AuthorizationError("only drivers can withdraw bids", delivery_id=delivery_id))

    removed = await store.delete_bid(delivery_id, actor.user_id)
    if removed:
        bids_withdrawn_total.inc()
        logger.info("Bid withdrawn delivery_id=%s driver_id=%s", delivery_id, actor.user_id)
        return Outcome.success(None)

    if await store.get_bid(delivery_id, actor.user_id) is None:
        return reject("withdraw_bid", NotFound(
            f"no bid from driver {actor.user_id} on delivery {delivery_id}", delivery_id=delivery_id,
        ))
    return reject("withdraw_bid", await _closed_reason(store, delivery_id))


async def list_bids(store: DeliveryStore, actor: Actor, delivery_id: str) -> Outcome[list[BidView]]:
    """All bids for the seller's delivery, newest first, with each driver's public profile."""
    delivery = await store.get_delivery(delivery_id)
    if delivery is None:
        return reject("list_bids", NotFound(f"delivery {delivery_id} not found", delivery_id=delivery_id))
    if actor.role is not Role.SELLER or delivery.seller_id != actor.user_id:
        return reject("list_bids", AuthorizationError(
            "only the delivery's seller can list its bids", delivery_id=delivery_id,
        ))

    bids = await store.list_bids(delivery_id)
    profiles = await store.get_driver_profiles({b.driver_id for b in bids})
    blocked = await store.blocked_drivers(delivery.seller_id)
    views = [
        BidView(
            **b.model_dump(),
            driver=profiles.get(b.driver_id),
            blocked=b.driver_id in blocked,
        )
        for b in bids
    ]
    return Outcome.success(views)


async def my_bids(store: DeliveryStore, actor: Actor) -> dict[str, Bid]:
    """Driver's own bids keyed by delivery id."""
    return {b.delivery_id: b for b in await store.list_bids_by_driver(actor.user_id)}


def is_bid_actionable(status: DeliveryStatus) -> bool:
    return status is DeliveryStatus.OPEN
