from fastapi import APIRouter
from posture_bridge.api.v1 import posture

api_router = APIRouter(prefix="/v1")
api_router.include_router(posture.router, prefix="/posture", tags=["posture"])
