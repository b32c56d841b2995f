"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from app.api.v1 import coach

api_router = APIRouter()

api_router.include_router(coach.router, prefix="/coach", tags=["coach"])
