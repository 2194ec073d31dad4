from fastapi import APIRouter

from creem_sync.api.routes import health, webhooks

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(webhooks.router, tags=["webhooks"])
