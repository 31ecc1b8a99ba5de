from fastapi import APIRouter

from stream_relay.api.routers.chat import router as chat_router
from stream_relay.api.routers.health import router as health_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(chat_router)
