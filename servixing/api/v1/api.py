from fastapi import APIRouter
from servixing.api.v1.routes.auth import router as auth_router
from servixing.api.v1.routes.payments import router as payments_router
from servixing.api.v1.routes.admin import router as admin_router
from servixing.api.v1.routes.webhooks import router as webhooks_router
from servixing.api.v1.routes.public import router as public_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth_router)
api_router.include_router(payments_router)
api_router.include_router(admin_router)
api_router.include_router(webhooks_router)
api_router.include_router(public_router)
