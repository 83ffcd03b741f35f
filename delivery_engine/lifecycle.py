"""
Delivery creation and every status change after assignment. Each step is a conditional write
on the expected status and the actor's party column; a guard failure writes nothing.
"""
import logging
import uuid
from typing import Any

import pydantic

from delivery_engine.config import settings
from delivery_engine.delivery_state import (
    DISPUTABLE_STATUSES,
    HIDEABLE_STATUSES,
    INITIAL_STATUS,
    DeliveryStatus,
)
from delivery_engine.disclosure import project
from delivery_engine.errors import (
    AuthorizationError,
    DuplicateRating,
    NotFound,
    Outcome,
    StatusConflict,
    ValidationError,
)
from delivery_engine.guards import guarded_transition, is_party, reject
from delivery_engine.metrics import deliveries_created_total
from delivery_engine.models import Actor, Delivery, NewDelivery, Rating, Role, utcnow
from delivery_engine.store import DeliveryStore

logger = logging.getLogger(__name__)


def _validation_error(e: pydantic.ValidationError) -> ValidationError:
    first = e.errors()[0]
    field = ".".join(str(p) for p in first.get("loc", ()))
    return ValidationError(f"{field}: {first.get('msg')}", field=field)


async def create_delivery(
    store: DeliveryStore,
    actor: Actor,
    data: NewDelivery | dict[str, Any],
) -> Outcome[Delivery]:
    if actor.role is not Role.SELLER:
        return reject("create_delivery", AuthorizationError("only sellers create deliveries"))
    try:
        new = data if isinstance(data, NewDelivery) else NewDelivery.model_validate(data)
    except pydantic.ValidationError as e:
        return reject("create_delivery", _validation_error(e))

    delivery = Delivery(
        id=str(uuid.uuid4()),
        seller_id=actor.user_id,
        status=INITIAL_STATUS,
        **new.model_dump(),
    )
    stored = await store.insert_delivery(delivery)
    deliveries_created_total.inc()
    logger.info("Delivery created delivery_id=%s seller_id=%s", stored.id, actor.user_id)
    return Outcome.success(stored)


async def get_delivery(store: DeliveryStore, actor: Actor, delivery_id: str) -> Outcome[dict]:
    """Delivery as `actor` may see it, with counterpart contact details where disclosed."""
    delivery = await store.get_delivery(delivery_id)
    if delivery is None:
        return reject("get_delivery", NotFound(f"delivery {delivery_id} not found", delivery_id=delivery_id))

    seller = driver = None
    if delivery.chosen_driver_id is not None and is_party(delivery, actor):
        if actor.role is Role.DRIVER:
            seller = await store.get_seller_profile(delivery.seller_id)
        else:
            driver = (await store.get_driver_profiles([delivery.chosen_driver_id])).get(delivery.chosen_driver_id)
    return Outcome.success(project(delivery, actor.role, actor.user_id, seller=seller, driver=driver))


async def mark_on_route(store: DeliveryStore, actor: Actor, delivery_id: str) -> Outcome[Delivery]:
    """Item picked up: ASSIGNED -> ON_ROUTE, stamping on_route_at."""
    roles = {Role.DRIVER, Role.SELLER} if settings.allow_seller_pickup_marking else {Role.DRIVER}
    return await guarded_transition(
        store,
        "mark_on_route",
        actor,
        delivery_id,
        sources={DeliveryStatus.ASSIGNED},
        target=DeliveryStatus.ON_ROUTE,
        roles=roles,
        expect={"on_route_at": None},
        changes={"on_route_at": utcnow()},
    )


async def mark_delivered(store: DeliveryStore, actor: Actor, delivery_id: str) -> Outcome[Delivery]:
    return await guarded_transition(
        store,
        "mark_delivered",
        actor,
        delivery_id,
        sources={DeliveryStatus.ON_ROUTE},
        target=DeliveryStatus.DELIVERED,
        roles={Role.DRIVER},
    )


async def mark_paid(store: DeliveryStore, actor: Actor, delivery_id: str) -> Outcome[Delivery]:
    """
    Seller records that the driver was paid. DELIVERED -> PAID, or straight to CLOSED when the
    driver already confirmed receiving the money.
    """
    outcome = await guarded_transition(
        store,
        "mark_paid",
        actor,
        delivery_id,
        sources={DeliveryStatus.DELIVERED},
        target=DeliveryStatus.PAID,
        roles={Role.SELLER},
        expect={"driver_confirmed_payment": False},
        changes={"seller_marked_paid": True},
        final=False,
    )
    if outcome.ok:
        return outcome
    if not isinstance(outcome.error, StatusConflict):
        return reject("mark_paid", outcome.error)
    # driver_confirmed_payment only ever goes False -> True, so a miss above is final for that branch
    return await guarded_transition(
        store,
        "mark_paid",
        actor,
        delivery_id,
        sources={DeliveryStatus.DELIVERED},
        target=DeliveryStatus.CLOSED,
        roles={Role.SELLER},
        expect={"driver_confirmed_payment": True},
        changes={"seller_marked_paid": True, "closed_at": utcnow()},
    )


async def confirm_payment(store: DeliveryStore, actor: Actor, delivery_id: str) -> Outcome[Delivery]:
    """
    Driver confirms the money arrived. On DELIVERED this only records the confirmation; once the
    seller has marked it PAID, the confirmation closes the delivery.
    """
    # DELIVERED before PAID: status only moves DELIVERED -> PAID, so this order never misses both
    outcome = await guarded_transition(
        store,
        "confirm_payment",
        actor,
        delivery_id,
        sources={DeliveryStatus.DELIVERED},
        target=DeliveryStatus.DELIVERED,
        roles={Role.DRIVER},
        expect={"driver_confirmed_payment": False},
        changes={"driver_confirmed_payment": True},
        final=False,
    )
    if outcome.ok:
        return outcome
    if not isinstance(outcome.error, StatusConflict):
        return reject("confirm_payment", outcome.error)
    return await guarded_transition(
        store,
        "confirm_payment",
        actor,
        delivery_id,
        sources={DeliveryStatus.PAID},
        target=DeliveryStatus.CLOSED,
        roles={Role.DRIVER},
        changes={"driver_confirmed_payment": True, "closed_at": utcnow()},
    )


async def close_delivery(store: DeliveryStore, actor: Actor, delivery_id: str) -> Outcome[Delivery]:
    """Seller archives a settled (or settled-offline) delivery."""
    return await guarded_transition(
        store,
        "close_delivery",
        actor,
        delivery_id,
        sources={DeliveryStatus.DELIVERED, DeliveryStatus.PAID},
        target=DeliveryStatus.CLOSED,
        roles={Role.SELLER},
        changes={"closed_at": utcnow()},
    )


async def cancel_delivery(store: DeliveryStore, actor: Actor, delivery_id: str) -> Outcome[Delivery]:
    """
    Only an OPEN delivery can be cancelled. Once a driver is assigned the seller must release
    them or open a dispute instead.
    """
    return await guarded_transition(
        store,
        "cancel_delivery",
        actor,
        delivery_id,
        sources={DeliveryStatus.OPEN},
        target=DeliveryStatus.CANCELLED,
        roles={Role.SELLER},
        expect={"chosen_driver_id": None},
        changes={"closed_at": utcnow()},
    )


async def open_dispute(
    store: DeliveryStore,
    actor: Actor,
    delivery_id: str,
    reason: str,
) -> Outcome[Delivery]:
    reason = (reason or "").strip()
    if not reason:
        return reject("open_dispute", ValidationError("a dispute needs a reason", field="reason"))
    return await guarded_transition(
        store,
        "open_dispute",
        actor,
        delivery_id,
        sources=DISPUTABLE_STATUSES,
        target=DeliveryStatus.DISPUTE,
        roles={Role.SELLER, Role.DRIVER},
        changes={"dispute_reason": reason, "dispute_opened_at": utcnow()},
    )


async def hide_delivery(store: DeliveryStore, actor: Actor, delivery_id: str) -> Outcome[None]:
    """Drop a finished delivery from the actor's own dashboard. History and status are untouched."""
    delivery = await store.get_delivery(delivery_id)
    if delivery is None:
        return reject("hide_delivery", NotFound(f"delivery {delivery_id} not found", delivery_id=delivery_id))
    if not is_party(delivery, actor):
        return reject("hide_delivery", AuthorizationError(
            f"{actor.role.value} {actor.user_id} is not a party to delivery {delivery_id}",
            delivery_id=delivery_id,
        ))
    # status is set-once for these values, so a read is enough here
    if delivery.status not in HIDEABLE_STATUSES:
        return reject("hide_delivery", StatusConflict(
            f"only finished deliveries can be hidden; delivery {delivery_id} is {delivery.status.value}",
            current_status=delivery.status.value,
            delivery_id=delivery_id,
        ))
    await store.set_hidden(delivery_id, actor.role, True)
    logger.info("Delivery hidden delivery_id=%s role=%s", delivery_id, actor.role.value)
    return Outcome.success(None)


RATEABLE_STATUSES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.PAID, DeliveryStatus.CLOSED})


async def rate_driver(
    store: DeliveryStore,
    actor: Actor,
    delivery_id: str,
    stars: int,
    comment: str | None = None,
) -> Outcome[Rating]:
    delivery = await store.get_delivery(delivery_id)
    if delivery is None:
        return reject("rate_driver", NotFound(f"delivery {delivery_id} not found", delivery_id=delivery_id))
    if actor.role is not Role.SELLER or delivery.seller_id != actor.user_id:
        return reject("rate_driver", AuthorizationError(
            "only the delivery's seller can rate its driver", delivery_id=delivery_id,
        ))
    if delivery.status not in RATEABLE_STATUSES or delivery.chosen_driver_id is None:
        return reject("rate_driver", StatusConflict(
            f"delivery {delivery_id} is {delivery.status.value}; rate after delivery",
            current_status=delivery.status.value,
            delivery_id=delivery_id,
        ))
    try:
        rating = Rating(
            delivery_id=delivery_id,
            driver_id=delivery.chosen_driver_id,
            stars=stars,
            comment=(comment or "").strip() or None,
        )
    except pydantic.ValidationError as e:
        return reject("rate_driver", _validation_error(e))
    try:
        stored = await store.insert_rating(rating)
    except DuplicateRating as e:
        e.message = f"delivery {delivery_id} was already rated"
        return reject("rate_driver", e)
    logger.info("Driver rated delivery_id=%s driver_id=%s stars=%d", delivery_id, rating.driver_id, stars)
    return Outcome.success(stored)
