"""
API v1 package initialization.

This module aggregates the v1 routers of the storefront API.
"""

from fastapi import APIRouter

from storefront.api.v1.checkout import router as checkout_router
from storefront.api.v1.orders import router as orders_router
from storefront.api.v1.payments import router as payments_router

api_router = APIRouter()
api_router.include_router(checkout_router)
api_router.include_router(orders_router)
api_router.include_router(payments_router)

__all__ = ["api_router", "checkout_router", "orders_router", "payments_router"]
