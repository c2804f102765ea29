"""HTTP routes.

Everything here is open; the only guarded surface is the WebSocket
handshake. Mounted under SERVICE_URL_BASE_PATH in main.py.
"""

from fastapi import APIRouter

from bento_event_relay.api.service_info import router as service_info_router

api_router = APIRouter()
api_router.include_router(service_info_router, tags=["service-info"])
