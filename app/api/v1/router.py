"""
API router
"""

from fastapi import APIRouter
from app.api.v1 import contracts
from app.api.v1 import health

api_router = APIRouter()

api_router.include_router(contracts.router, prefix="/contracts", tags=["contracts"])
api_router.include_router(health.router, prefix="/health", tags=["service"])
