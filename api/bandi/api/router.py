from fastapi import APIRouter

from bandi.api.routes import assignments, health, notices, ratings, users

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(notices.router, prefix="/notices", tags=["notices"])
api_router.include_router(assignments.router, prefix="/assignments", tags=["assignments"])
api_router.include_router(ratings.router, prefix="/ratings", tags=["ratings"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
