"""API routes."""

from fastapi import APIRouter

from rehabright.api import sessions, assess

api_router = APIRouter()

api_router.include_router(sessions.router, prefix="/sessions", tags=["Sessions"])
api_router.include_router(assess.router, prefix="/assess", tags=["Assessment"])
