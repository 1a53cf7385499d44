from fastapi import APIRouter

from app.api.routers import auth, memberships, registrations

api_router = APIRouter()

api_router.include_router(auth.router)
api_router.include_router(registrations.router)
api_router.include_router(memberships.router)
