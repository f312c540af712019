"""Entrypoint for the FastAPI application."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hookline.api import events, health, webhooks
from hookline.core.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="Outbound webhook delivery with signed payloads, retries and endpoint health",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

# Register API routers
app.include_router(health.router)  # Health checks at root level
app.include_router(webhooks.router, prefix=settings.api_prefix)
app.include_router(events.router, prefix=settings.api_prefix)
