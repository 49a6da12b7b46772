from fastapi import APIRouter

from app.api.v1.admin import router as admin_router
from app.api.v1.classes import router as classes_router
from app.api.v1.conversion import router as conversion_router
from app.api.v1.credits import router as credits_router

api_router = APIRouter()
api_router.include_router(classes_router)
api_router.include_router(credits_router)
api_router.include_router(conversion_router)
api_router.include_router(admin_router)
