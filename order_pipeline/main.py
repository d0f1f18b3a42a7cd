"""
HTTP surface for order status transitions and post-payment validation.
Run: uvicorn order_pipeline.main:app
"""
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import Response

from order_pipeline.config import settings
from order_pipeline.db import close_pool, get_pool, init_schema
from order_pipeline.metrics import get_metrics_bytes, get_metrics_content_type
from order_pipeline.routes import orders, payments

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    pool = await get_pool()
    if settings.init_schema_on_startup:
        await init_schema(pool)
        logger.info("Schema ready.")
    yield
    await close_pool()


app = FastAPI(title="Order Pipeline", lifespan=lifespan)
app.include_router(orders.router)
app.include_router(payments.router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: transition outcomes, history write failures, validation outcomes."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
