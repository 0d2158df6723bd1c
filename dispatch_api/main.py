"""
Main FastAPI application
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dispatch_api.config import get_settings
from dispatch_api.database import engine, Base
from dispatch_api import models  # noqa: F401 - registers tables on Base.metadata
from dispatch_api.api import dispatches
from dispatch_api.services.events import event_bus
from dispatch_api.services.journal import register_journal_handlers

settings = get_settings()
logger = logging.getLogger(__name__)

register_journal_handlers(event_bus)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")

    yield

    await engine.dispose()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(dispatches.router, prefix="/api/dispatches", tags=["Dispatches"])


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "dispatch_api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
