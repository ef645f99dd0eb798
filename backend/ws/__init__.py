"""WebSocket endpoints for query and conversation event streaming."""

from fastapi import APIRouter

from ws.global_ws import router as global_ws_router
from ws.queries import router as queries_ws_router

ws_router = APIRouter()
ws_router.include_router(queries_ws_router)
ws_router.include_router(global_ws_router)

__all__ = ["ws_router"]
