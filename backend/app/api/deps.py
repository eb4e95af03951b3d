import logging
from typing import AsyncGenerator

from fastapi import HTTPException, Request, status

from app.db.session import AsyncSessionLocal
from app.services.ai.gemini_gateway import GeminiGateway
from app.services.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator:
    async with AsyncSessionLocal() as session:
        yield session


def get_tool_registry(request: Request) -> ToolRegistry:
    """The registry built once at startup from every enabled provider"""
    return request.app.state.tool_registry


def get_model_gateway(request: Request) -> GeminiGateway:
    """
    The Gemini gateway built at startup.

    Raises:
        HTTPException 503: GOOGLE_API_KEY is not configured
    """
    gateway = getattr(request.app.state, "model_gateway", None)
    if gateway is None:
        logger.warning("Chat requested but Gemini is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Gemini is not configured. Set GOOGLE_API_KEY to enable chat.",
        )
    return gateway
