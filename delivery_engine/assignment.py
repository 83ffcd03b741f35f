"""
Assignment resolver.

A delivery gets its driver through exactly one compare-and-swap on the delivery row:

    UPDATE deliveries SET status = 'ASSIGNED', chosen_driver_id = :driver
    WHERE id = :id AND status = 'OPEN' AND chosen_driver_id IS NULL AND seller_id = :seller

Whoever's write matches wins; every other concurrent attempt matches zero rows and gets
AssignmentConflict. There is no retry after the write and the bid ledger is never consulted:
authority lives only in the delivery row. The seller's block list is checked first.
"""
import logging

from delivery_engine.delivery_state import DeliveryStatus
from delivery_engine.errors import (
    AssignmentConflict,
    AuthorizationError,
    Outcome,
    ValidationError,
)
from delivery_engine.guards import committed, explain_miss, reject
from delivery_engine.models import Actor, Delivery, DriverProfile, Role
from delivery_engine.store import DeliveryStore

logger = logging.getLogger(__name__)


async def assign_driver(
    store: DeliveryStore,
    actor: Actor,
    delivery_id: str,
    driver_id: str,
) -> Outcome[Delivery]:
    if not driver_id:
        return reject("assign_driver", ValidationError("driver_id is required", field="driver_id"))
    if actor.role is not Role.SELLER:
        return reject("assign_driver", AuthorizationError("only sellers assign drivers", delivery_id=delivery_id))
    if driver_id == actor.user_id:
        return reject("assign_driver", ValidationError("seller cannot assign themselves", field="driver_id"))
    if await store.is_blocked(actor.user_id, driver_id):
        return reject("assign_driver", AuthorizationError(
            f"driver {driver_id} is blocked by this seller", delivery_id=delivery_id, driver_id=driver_id,
        ))

    updated = await store.update_delivery(
        delivery_id,
        {
            "status": DeliveryStatus.OPEN,
            "chosen_driver_id": None,
            "seller_id": actor.user_id,
        },
        {
            "status": DeliveryStatus.ASSIGNED,
            "chosen_driver_id": driver_id,
        },
    )
    if updated is None:
        # taken, cancelled, gone, or not this seller's: the caller re-reads and tells the user
        logger.warning("Assignment lost delivery_id=%s driver_id=%s", delivery_id, driver_id)
        return reject("assign_driver", AssignmentConflict(
            f"delivery {delivery_id} is no longer open for assignment",
            delivery_id=delivery_id,
            driver_id=driver_id,
        ))
    return committed("assign_driver", {DeliveryStatus.OPEN}, updated)


async def assigned_driver_profile(store: DeliveryStore, delivery: Delivery) -> DriverProfile | None:
    """Public identity of the chosen driver, for the seller's confirmation screen."""
    if delivery.chosen_driver_id is None:
        return None
    profiles = await store.get_driver_profiles([delivery.chosen_driver_id])
    return profiles.get(delivery.chosen_driver_id)


async def release_driver(
    store: DeliveryStore,
    actor: Actor,
    delivery_id: str,
    driver_id: str,
    reason: str | None = None,
) -> Outcome[Delivery]:
    """
    Seller drops the chosen driver before pickup (no-show, unreachable, ...). The delivery goes
    back to OPEN and the driver is blocked from this seller's future deliveries, in one store write.
    `driver_id` must name the driver the seller saw, so a stale screen cannot release someone else.
    """
    if actor.role is not Role.SELLER:
        return reject("release_driver", AuthorizationError("only sellers release drivers", delivery_id=delivery_id))

    sources = {DeliveryStatus.ASSIGNED}
    updated = await store.release_and_block(
        delivery_id,
        {"status": sources, "seller_id": actor.user_id, "chosen_driver_id": driver_id},
        {"status": DeliveryStatus.OPEN, "chosen_driver_id": None},
        seller_id=actor.user_id,
        driver_id=driver_id,
        reason=(reason or "").strip() or None,
    )
    if updated is None:
        return reject("release_driver", await explain_miss(store, delivery_id, actor, sources))
    logger.info("Driver released and blocked delivery_id=%s driver_id=%s", delivery_id, driver_id)
    return committed("release_driver", sources, updated)
