"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from agripool.api.routes import bookings, equipment, group_bookings, payments

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(bookings.router)
api_router.include_router(group_bookings.router)
api_router.include_router(payments.router)
api_router.include_router(equipment.router)
