import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.api.deps import get_tool_registry
from app.connectors.notion import NotionProvider
from app.core.config import settings
from app.services.tools.registry import ToolRegistry
from app.schemas.chatbot import ToolDescriptorResponse, ToolsResponse

logger = logging.getLogger(__name__)

router = APIRouter()

SERVICES = ["jira", "notion", "github", "slack", "team"]


@router.get("", response_model=ToolsResponse)
async def list_tools(registry: ToolRegistry = Depends(get_tool_registry)):
    """
    List every tool the assistant can call, plus which integrations are configured.
    """
    tools = [
        ToolDescriptorResponse(
            name=descriptor.name,
            description=descriptor.description,
            parameters=descriptor.parameters,
        )
        for descriptor in registry.list_descriptors()
    ]
    enabled = set(registry.providers())
    services = {name: name in enabled for name in SERVICES}
    services["gemini"] = settings.GEMINI_CONFIGURED

    return ToolsResponse(tools=tools, count=len(tools), services=services)


@router.get("/notion/test")
async def test_notion_connection(request: Request):
    """Check the Notion integration token against the Notion API."""
    providers = getattr(request.app.state, "tool_providers", [])
    notion = next((p for p in providers if isinstance(p, NotionProvider)), None)
    if notion is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notion is not configured. Set NOTION_API_KEY to enable it.",
        )

    result = await notion.test_connection()
    if not result.success:
        logger.warning(f"Notion connection test failed: {result.message}")
    return {
        "success": result.success,
        "message": result.message,
        "latency_ms": result.latency_ms,
        "details": result.details,
        "errors": result.errors,
        "tested_at": result.tested_at.isoformat(),
    }
