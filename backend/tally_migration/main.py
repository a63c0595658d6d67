"""
Tally Migration – FastAPI application entry point.

Run with:
    uvicorn tally_migration.main:app --reload --host 0.0.0.0 --port 8000
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from tally_migration.api.routes import router
from tally_migration.core.config import settings
from tally_migration.core.database import create_db_and_tables
from tally_migration.core.logging import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown hooks."""
    setup_logging()
    logger.info("Starting Tally migration service …")
    create_db_and_tables()
    logger.info("Database tables ready")
    yield
    logger.info("Tally migration service shut down")


app = FastAPI(
    title="Tally Migration API",
    description="Upload Tally XML/JSON exports and migrate them into the accounting database",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.get("/")
def root():
    return {"message": "Tally Migration API", "docs": "/docs"}
