"""
Royalty Statements - FastAPI Application

Royalty statement calculation engine for publishers: tiered rates,
lifetime escalation, co-author splits and advance recoupment.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.database import engine, Base
from app.routers.contracts import router as contracts_router
from app.routers.royalties import (
    router as statement_runs_router,
    statements_router,
    contacts_router,
    titles_router,
)

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Create tables on startup (for development; production uses alembic)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield
    # Cleanup on shutdown
    await engine.dispose()


app = FastAPI(
    title="Royalty Statements",
    description="Royalty statement calculation engine for publishers",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(contracts_router)
app.include_router(statement_runs_router)
app.include_router(statements_router)
app.include_router(contacts_router)
app.include_router(titles_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
