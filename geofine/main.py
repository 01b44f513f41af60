"""
GeoFine - Telemetry Infraction Engine
Main FastAPI application
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
import logging

from geofine.core import config
from geofine.core.database import SessionLocal, init_db
from geofine.modules.webhook import routes as webhook_routes
from geofine.modules.webhook.service import EventPipeline
from geofine.workers.event_processor import build_event_queue

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='[%(asctime)s] %(name)s %(levelname)s: %(message)s'
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    event_queue = build_event_queue(EventPipeline(SessionLocal).process)
    event_queue.start()
    app.state.event_queue = event_queue
    logger.info(f"Event queue ready (backend={config.QUEUE_BACKEND})")
    yield
    event_queue.stop()


# Create FastAPI app
app = FastAPI(
    title="GeoFine",
    description="Telemetry event ingestion and infraction detection",
    version=VERSION,
    lifespan=lifespan,
)

app.include_router(webhook_routes.router)

@app.get("/")
async def root():
    return {
        "service": "GeoFine",
        "status": "running",
        "version": VERSION,
        "queue_backend": config.QUEUE_BACKEND,
    }

@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "modules": ["webhook", "vehicles", "stops", "arrivals", "infractions"]
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
