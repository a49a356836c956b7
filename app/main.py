import logging

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.api.billing import router as billing_router
from app.api.content import router as content_router
from app.api.dunning import router as dunning_router
from app.api.subscriptions import router as subscriptions_router
from app.errors import register_error_handlers
from app.logging import configure_logging
from app.observability import ObservabilityMiddleware

app = FastAPI(title="streamflix API")
logger = logging.getLogger(__name__)
configure_logging()
app.add_middleware(ObservabilityMiddleware)
register_error_handlers(app)

# Streaming and upload paths are fixed by existing players and clients.
app.include_router(content_router)
app.include_router(dunning_router, prefix="/api/v1")
app.include_router(billing_router, prefix="/api/v1")
app.include_router(subscriptions_router, prefix="/api/v1")


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
