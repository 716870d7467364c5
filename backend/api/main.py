"""
Siver Logistics API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.errors import register_error_handlers
from core.config import get_settings

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Siver Logistics API starting up", version=settings.app_version)
    yield
    logger.info("Siver Logistics API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Shipping quotes and purchase-order consolidation for marketplace tenants",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Import and register routers
from api.v1.routers import consolidation, purchase_orders, shipping
from realtime.websocket import router as ws_router

app.include_router(shipping.router)
app.include_router(purchase_orders.router)
app.include_router(consolidation.router)
app.include_router(ws_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
