from fastapi import APIRouter

from app.api.v1 import chat, tools

api_router = APIRouter()
api_router.include_router(chat.router, tags=["chat"])
api_router.include_router(tools.router, prefix="/tools", tags=["tools"])
