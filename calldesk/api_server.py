"""
FastAPI API Server.

JSON API the operator dashboard polls: refresh and list an agent's
unified calls, drain notifications, act on appointments, read stats.

Start with:
    uvicorn calldesk.api_server:app --reload --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from dotenv import load_dotenv
load_dotenv(".env.local")

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from calldesk.api.appointments import router as appointments_router
from calldesk.api.calls import router as calls_router
from calldesk.api.middleware import RateLimitMiddleware, RequestIdMiddleware
from calldesk.logging_config import get_logger, setup_logging
from calldesk.services.reconciliation_session import SessionRegistry

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle hooks."""
    if getattr(app.state, "sessions", None) is None:
        app.state.sessions = SessionRegistry()
    logger.info("api_server_starting")
    yield
    await app.state.sessions.close_all()
    logger.info("api_server_stopping")


app = FastAPI(
    title="Calldesk API",
    description="Call-log reconciliation and appointment extraction for call-center agents",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.sessions = None

# Middleware (order matters, outermost first)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(calls_router)
app.include_router(appointments_router)


@app.get("/health", tags=["System"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "service": "calldesk"}


@app.get("/", tags=["System"])
async def root() -> dict[str, str]:
    """API root."""
    return {
        "service": "Calldesk",
        "version": "0.1.0",
        "docs": "/docs",
    }
