from fastapi import APIRouter

from pulse.api.v1 import auth, conversations, messages, notifications, users, ws

api_router = APIRouter()
api_router.include_router(auth.router)
api_router.include_router(users.router)
api_router.include_router(conversations.router)
api_router.include_router(messages.router)
api_router.include_router(notifications.router)
api_router.include_router(ws.router)
