import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import Response

from order_lifecycle.db import close_pool, get_pool, init_schema
from order_lifecycle.metrics import get_metrics_bytes, get_metrics_content_type
from order_lifecycle.redis_client import close_redis, get_redis
from order_lifecycle.routes import admin, orders

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await get_redis()
    pool = await get_pool()
    await init_schema(pool)
    logger.info("Schema ready. Order lifecycle API started.")
    yield
    await close_redis()
    await close_pool()


app = FastAPI(title="Order Lifecycle", lifespan=lifespan)
app.include_router(orders.router)
app.include_router(admin.router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: order_transitions_total, refunds_total, refund_reconciliation_flags_total."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
