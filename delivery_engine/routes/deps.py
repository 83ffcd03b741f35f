from fastapi import Header, HTTPException, Request
from fastapi.responses import JSONResponse

from delivery_engine.errors import Outcome
from delivery_engine.models import Actor, Role
from delivery_engine.store import DeliveryStore

# Outcome code -> HTTP status
STATUS_FOR_CODE = {
    "validation_error": 422,
    "authorization_error": 403,
    "not_found": 404,
    "duplicate_bid": 409,
    "duplicate_rating": 409,
    "status_conflict": 409,
    "assignment_conflict": 409,
}


def get_store(request: Request) -> DeliveryStore:
    return request.app.state.store


def get_actor(
    x_user_id: str = Header(..., description="Acting user id (set by the product's auth layer)"),
    x_user_role: Role = Header(..., description="seller | driver"),
) -> Actor:
    if not x_user_id.strip():
        raise HTTPException(status_code=401, detail="missing acting user")
    return Actor(user_id=x_user_id.strip(), role=x_user_role)


def respond(outcome: Outcome, content: dict | None = None, status_code: int = 200) -> JSONResponse:
    """Success -> content; business outcome -> its status code with a stable error body."""
    if outcome.ok:
        return JSONResponse(status_code=status_code, content=content if content is not None else {"status": "ok"})
    error = outcome.error
    body = {"status": "error", "code": error.code, "message": error.message}
    current_status = error.details.get("current_status")
    if current_status:
        body["current_status"] = current_status
    return JSONResponse(status_code=STATUS_FOR_CODE.get(error.code, 400), content=body)
