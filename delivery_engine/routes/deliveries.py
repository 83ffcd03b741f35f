from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from delivery_engine import assignment, dashboards, lifecycle
from delivery_engine.disclosure import project
from delivery_engine.errors import Outcome
from delivery_engine.models import Actor, NewDelivery, Role
from delivery_engine.routes.deps import get_actor, get_store, respond
from delivery_engine.store import DeliveryStore

router = APIRouter(prefix="/deliveries", tags=["deliveries"])


class AssignBody(BaseModel):
    driver_id: str = Field(..., min_length=1, description="Driver taken from the bid list")


class ReleaseBody(BaseModel):
    driver_id: str = Field(..., min_length=1, description="Driver currently shown as assigned")
    reason: str | None = Field(default=None, description="Why the seller dropped the driver")


class DisputeBody(BaseModel):
    reason: str = Field(..., description="Short description of the problem")


class RatingBody(BaseModel):
    stars: int = Field(..., description="1..5")
    comment: str | None = None


def _snapshot(outcome: Outcome, actor: Actor) -> JSONResponse:
    # clients replace their local copy with this; never with an assumed transition
    content = {"delivery": project(outcome.value, actor.role, actor.user_id)} if outcome.ok else None
    return respond(outcome, content)


@router.post("")
async def create_delivery(
    body: NewDelivery,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    outcome = await lifecycle.create_delivery(store, actor, body)
    content = {"delivery": outcome.value.model_dump(mode="json")} if outcome.ok else None
    return respond(outcome, content, status_code=201)


@router.get("/dashboard")
async def dashboard(
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    if actor.role is Role.SELLER:
        outcome = await dashboards.seller_dashboard(store, actor)
    else:
        outcome = await dashboards.driver_dashboard(store, actor)
    return respond(outcome, {"tabs": outcome.value} if outcome.ok else None)


@router.get("/{delivery_id}")
async def get_delivery(
    delivery_id: str,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    outcome = await lifecycle.get_delivery(store, actor, delivery_id)
    return respond(outcome, {"delivery": outcome.value} if outcome.ok else None)


@router.post("/{delivery_id}/assign")
async def assign_driver(
    delivery_id: str,
    body: AssignBody,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    """
    Choose a driver. Exactly one concurrent caller wins; the rest get 409 assignment_conflict
    and should re-fetch the delivery rather than retry.
    """
    outcome = await assignment.assign_driver(store, actor, delivery_id, body.driver_id)
    if not outcome.ok:
        return respond(outcome)
    driver = await assignment.assigned_driver_profile(store, outcome.value)
    return respond(outcome, {"delivery": project(outcome.value, actor.role, actor.user_id, driver=driver)})


@router.post("/{delivery_id}/release")
async def release_driver(
    delivery_id: str,
    body: ReleaseBody,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    outcome = await assignment.release_driver(store, actor, delivery_id, body.driver_id, body.reason)
    return _snapshot(outcome, actor)


@router.post("/{delivery_id}/pickup")
async def mark_on_route(
    delivery_id: str,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    return _snapshot(await lifecycle.mark_on_route(store, actor, delivery_id), actor)


@router.post("/{delivery_id}/deliver")
async def mark_delivered(
    delivery_id: str,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    return _snapshot(await lifecycle.mark_delivered(store, actor, delivery_id), actor)


@router.post("/{delivery_id}/paid")
async def mark_paid(
    delivery_id: str,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    return _snapshot(await lifecycle.mark_paid(store, actor, delivery_id), actor)


@router.post("/{delivery_id}/confirm-payment")
async def confirm_payment(
    delivery_id: str,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    return _snapshot(await lifecycle.confirm_payment(store, actor, delivery_id), actor)


@router.post("/{delivery_id}/close")
async def close_delivery(
    delivery_id: str,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    return _snapshot(await lifecycle.close_delivery(store, actor, delivery_id), actor)


@router.post("/{delivery_id}/cancel")
async def cancel_delivery(
    delivery_id: str,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    return _snapshot(await lifecycle.cancel_delivery(store, actor, delivery_id), actor)


@router.post("/{delivery_id}/dispute")
async def open_dispute(
    delivery_id: str,
    body: DisputeBody,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    return _snapshot(await lifecycle.open_dispute(store, actor, delivery_id, body.reason), actor)


@router.post("/{delivery_id}/hide")
async def hide_delivery(
    delivery_id: str,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    outcome = await lifecycle.hide_delivery(store, actor, delivery_id)
    return respond(outcome, {"status": "hidden", "delivery_id": delivery_id})


@router.post("/{delivery_id}/rating")
async def rate_driver(
    delivery_id: str,
    body: RatingBody,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    outcome = await lifecycle.rate_driver(store, actor, delivery_id, body.stars, body.comment)
    content = outcome.value.model_dump(mode="json") if outcome.ok else None
    return respond(outcome, content, status_code=201)
