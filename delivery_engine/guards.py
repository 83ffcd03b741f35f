"""
Guarded transitions: one conditional write keyed on the expected status and the actor's
identity. The row is only re-read after a miss, to tell the caller why nothing happened.
"""
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from delivery_engine.delivery_state import DeliveryStatus, is_valid_transition
from delivery_engine.errors import (
    AuthorizationError,
    DeliveryError,
    NotFound,
    Outcome,
    StatusConflict,
)
from delivery_engine.metrics import operations_rejected_total, transitions_total
from delivery_engine.models import Actor, Delivery, Role
from delivery_engine.store import DeliveryStore

logger = logging.getLogger(__name__)

# Column that must hold the actor's id for each role
PARTY_COLUMN = {
    Role.SELLER: "seller_id",
    Role.DRIVER: "chosen_driver_id",
}


def reject(operation: str, error: DeliveryError) -> Outcome:
    operations_rejected_total.labels(operation=operation, code=error.code).inc()
    logger.info("%s rejected: %s (%s)", operation, error.code, error.message)
    return Outcome.fail(error)


def committed(operation: str, before: Iterable[DeliveryStatus], delivery: Delivery) -> Outcome:
    # before is the expected source set; the write matched exactly one of them
    sources = sorted(s.value for s in before)
    from_status = sources[0] if len(sources) == 1 else "|".join(sources)
    if delivery.status.value not in sources:
        transitions_total.labels(from_status=from_status, to_status=delivery.status.value).inc()
    logger.info("%s delivery_id=%s -> %s", operation, delivery.id, delivery.status.value)
    return Outcome.success(delivery)


def is_party(delivery: Delivery, actor: Actor) -> bool:
    return getattr(delivery, PARTY_COLUMN[actor.role]) == actor.user_id


async def explain_miss(
    store: DeliveryStore,
    delivery_id: str,
    actor: Actor,
    sources: Iterable[DeliveryStatus],
) -> DeliveryError:
    """Classify a conditional write that matched zero rows. Informational only; never retried."""
    current = await store.get_delivery(delivery_id)
    if current is None:
        return NotFound(f"delivery {delivery_id} not found", delivery_id=delivery_id)
    if not is_party(current, actor):
        return AuthorizationError(
            f"{actor.role.value} {actor.user_id} is not a party to delivery {delivery_id}",
            delivery_id=delivery_id,
        )
    return StatusConflict(
        f"delivery {delivery_id} is {current.status.value}, expected one of "
        f"{sorted(s.value for s in sources)}",
        current_status=current.status.value,
        delivery_id=delivery_id,
    )


async def guarded_transition(
    store: DeliveryStore,
    operation: str,
    actor: Actor,
    delivery_id: str,
    *,
    sources: Iterable[DeliveryStatus],
    target: DeliveryStatus,
    roles: Iterable[Role],
    changes: Mapping[str, Any] | None = None,
    expect: Mapping[str, Any] | None = None,
    final: bool = True,
) -> Outcome:
    """
    Move delivery_id from one of `sources` to `target` if `actor` holds one of `roles` and is
    that role's party on the row. Extra `expect` columns narrow the match further.
    With `final=False` a miss is returned unrecorded, for callers that try another branch next.
    """
    sources = frozenset(sources)
    for source in sources:
        if not is_valid_transition(source, target) and source is not target:
            raise ValueError(f"{operation}: {source.value} -> {target.value} is not in the transition graph")
    if actor.role not in frozenset(roles):
        error = AuthorizationError(f"{actor.role.value} may not {operation}", delivery_id=delivery_id)
        return reject(operation, error) if final else Outcome.fail(error)

    conditions = {"status": sources, PARTY_COLUMN[actor.role]: actor.user_id}
    conditions.update(expect or {})
    updated = await store.update_delivery(
        delivery_id,
        conditions,
        {"status": target, **(changes or {})},
    )
    if updated is None:
        error = await explain_miss(store, delivery_id, actor, sources)
        return reject(operation, error) if final else Outcome.fail(error)
    return committed(operation, sources, updated)
