"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from affiliate_engine.api.referrals import router as referrals_router
from affiliate_engine.api.affiliates import router as affiliates_router
from affiliate_engine.api.admin import router as admin_router
from affiliate_engine.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(referrals_router)
api_router.include_router(affiliates_router)
api_router.include_router(admin_router)
api_router.include_router(health_router)
