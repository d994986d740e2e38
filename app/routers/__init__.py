"""API routers for the order escrow service."""
from fastapi import APIRouter

from . import escalations, health, orders, users


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(users.router)
    api_router.include_router(orders.router)
    api_router.include_router(escalations.router)
    return api_router
