"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rehabright.config import get_settings
from rehabright.api import api_router
from rehabright.cv.voice import shutdown_speech_worker
from rehabright.database import init_models
from rehabright.services.session_manager import get_session_manager

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting {settings.app_name}")
    if settings.auto_create_tables:
        await init_models()
    yield
    # Live sessions own voice timers; close them before exiting
    get_session_manager().close_all()
    shutdown_speech_worker()
    logger.info(f"Shutting down {settings.app_name}")


app = FastAPI(
    title=settings.app_name,
    description="""
    Rehabilitation Exercise Feedback API

    Real-time form feedback for rehabilitation exercises from body pose
    landmarks. Only numeric landmark data reaches this service; camera
    frames never leave the client.

    ## Key Features

    - **Joint Angles**: Six smoothed side-view angles per frame
    - **Rep Counting**: Self-calibrating, hysteresis-based phase tracking
    - **Form Scoring**: Rule tables per exercise with structural checks
    - **Coaching Summary**: Template tips, or text generation from numeric features

    ## Supported Exercises

    **squat** and **pullup**
    """,
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix=settings.api_prefix)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": "1.0.0",
        "active_sessions": len(get_session_manager()),
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "health": "/health"
    }
