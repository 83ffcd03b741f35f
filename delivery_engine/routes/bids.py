from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from delivery_engine import bids
from delivery_engine.models import Actor
from delivery_engine.routes.deps import get_actor, get_store, respond
from delivery_engine.store import DeliveryStore

router = APIRouter(prefix="/deliveries/{delivery_id}/bids", tags=["bids"])


@router.post("")
async def submit_bid(
    delivery_id: str,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    """
    Driver bids on an OPEN delivery. New bid -> 201.
    Second bid from the same driver -> 409 duplicate_bid (safe to show as "already sent").
    """
    outcome = await bids.submit_bid(store, actor, delivery_id)
    content = outcome.value.model_dump(mode="json") if outcome.ok else None
    return respond(outcome, content, status_code=201)


@router.delete("/mine")
async def withdraw_bid(
    delivery_id: str,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    outcome = await bids.withdraw_bid(store, actor, delivery_id)
    return respond(outcome, {"status": "withdrawn", "delivery_id": delivery_id})


@router.get("")
async def list_bids(
    delivery_id: str,
    actor: Actor = Depends(get_actor),
    store: DeliveryStore = Depends(get_store),
) -> JSONResponse:
    """Seller's view of every bid on their delivery, newest first."""
    outcome = await bids.list_bids(store, actor, delivery_id)
    content = {"bids": [b.model_dump(mode="json") for b in outcome.value]} if outcome.ok else None
    return respond(outcome, content)
