from fastapi import APIRouter

from app.api.v1.scan import router as scan_router

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(scan_router)
