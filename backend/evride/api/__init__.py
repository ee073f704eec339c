from fastapi import APIRouter

from .routes import analytics, auth, internal, pricing, rides, users, vehicles


def create_api_router() -> APIRouter:
    router = APIRouter(prefix="/api/v1")
    router.include_router(auth.router)
    router.include_router(vehicles.router)
    router.include_router(rides.router)
    router.include_router(users.router)
    router.include_router(pricing.router)
    router.include_router(analytics.router)
    router.include_router(internal.router)
    return router
