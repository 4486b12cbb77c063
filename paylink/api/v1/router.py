"""
Main API router
"""
from fastapi import APIRouter

from paylink.api.v1.endpoints import health, payments, rewards, savings, security, wallet, webhooks

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["Health"])
api_router.include_router(wallet.router, prefix="/wallet", tags=["Wallet"])
api_router.include_router(payments.router, prefix="/payments", tags=["Payments"])
api_router.include_router(savings.router, prefix="/savings", tags=["Savings"])
api_router.include_router(rewards.router, prefix="/rewards", tags=["Rewards"])
api_router.include_router(security.router, prefix="/security", tags=["Security"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
