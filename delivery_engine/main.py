import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse, Response

from delivery_engine.config import settings
from delivery_engine.db import PostgresStore, close_pool, get_pool, init_schema
from delivery_engine.errors import PersistenceError
from delivery_engine.memory_store import MemoryStore
from delivery_engine.metrics import get_metrics_bytes, get_metrics_content_type
from delivery_engine.routes import bids, deliveries

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.storage_backend == "memory":
        app.state.store = MemoryStore()
        logger.info("Using in-memory delivery store")
        yield
        return
    pool = await get_pool()
    await init_schema(pool)
    app.state.store = PostgresStore(pool)
    logger.info("Schema ready. Backend=Postgres.")
    yield
    await close_pool()


app = FastAPI(title="Delivery Assignment Engine", lifespan=lifespan)
app.include_router(deliveries.router)
app.include_router(bids.router)


@app.exception_handler(PersistenceError)
async def persistence_error(request, exc: PersistenceError) -> JSONResponse:
    # infrastructure failure, not a business conflict: no retry hint
    logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"status": "error", "code": "persistence_unavailable"})


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: bids, transitions, rejected operations."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )


def run() -> None:
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
