"""
Notion Tool Provider

Reads the project page and task database, and adds tasks to the database.
The default database and project page come from configuration; tools that
need one fail with a clear message when it is not set.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

import httpx

from app.core.config import Settings
from app.connectors.base import (
    ToolProviderBase,
    ProviderRegistry,
    ConnectionTestResult,
    tool_success,
)
from app.services.tools.executor import ToolExecutionError
from app.services.tools.registry import ToolHandler
from app.services.tools.schema import ToolDescriptor

logger = logging.getLogger(__name__)

TASK_STATUSES = ["Not started", "In progress", "Done", "Blocked"]
CONTENT_TYPES = ["page", "database", "blocks"]


@dataclass(frozen=True)
class NotionConfig:
    api_key: str
    version: str = "2022-06-28"
    database_id: Optional[str] = None
    project_page_id: Optional[str] = None


def extract_text(rich_text: Any) -> str:
    if not isinstance(rich_text, list):
        return ""
    return "".join(item.get("plain_text", "") for item in rich_text if isinstance(item, dict))


def format_blocks(blocks: Any) -> str:
    """Render Notion blocks as readable markdown-ish text"""
    if not isinstance(blocks, list):
        return "No content available"

    prefixes = {
        "paragraph": "",
        "heading_1": "# ",
        "heading_2": "## ",
        "heading_3": "### ",
        "bulleted_list_item": "• ",
        "numbered_list_item": "1. ",
    }
    lines = []
    for block in blocks:
        block_type = block.get("type")
        body = block.get(block_type) or {}
        if block_type in prefixes:
            lines.append(prefixes[block_type] + extract_text(body.get("rich_text")))
        elif block_type == "to_do":
            checked = "[x]" if body.get("checked") else "[ ]"
            lines.append(f"{checked} {extract_text(body.get('rich_text'))}")
        else:
            lines.append(f"[{block_type}]")
    return "\n".join(lines)


@ProviderRegistry.register
class NotionProvider(ToolProviderBase):
    PROVIDER_NAME = "notion"
    DISPLAY_NAME = "Notion"
    API_BASE_URL = "https://api.notion.com/v1"

    def __init__(self, config: NotionConfig, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        super().__init__(client=client, timeout=timeout)
        self.config = config

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["NotionProvider"]:
        if not settings.NOTION_API_KEY:
            return None
        return cls(
            NotionConfig(
                api_key=settings.NOTION_API_KEY,
                version=settings.NOTION_VERSION,
                database_id=settings.NOTION_DATABASE_ID,
                project_page_id=settings.NOTION_PAGE_ID,
            ),
            timeout=settings.EXTERNAL_API_TIMEOUT,
        )

    def default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Notion-Version": self.config.version,
            "Content-Type": "application/json",
        }

    def get_descriptors(self) -> List[ToolDescriptor]:
        return [
            ToolDescriptor(
                name="get_project_context",
                description=(
                    "Retrieve the current project description and context to understand what tasks need "
                    "to be created. Use this first when asked to create project tasks."
                ),
            ),
            ToolDescriptor(
                name="get_notion_page",
                description="Retrieve content from a Notion page or database. Use this to get page content, blocks, or database entries.",
                parameters={
                    "type": "object",
                    "properties": {
                        "page_id": {
                            "type": "string",
                            "description": "The ID of the Notion page or database. Defaults to the configured project database/page; you can omit this.",
                        },
                        "type": {
                            "type": "string",
                            "enum": CONTENT_TYPES,
                            "description": '"page" for page properties, "database" for database entries, "blocks" for page content blocks. Defaults to "database".',
                        },
                    },
                    "required": [],
                },
            ),
            ToolDescriptor(
                name="add_notion_task",
                description="Add a new task to the Notion task database. Use this to create new tasks, todos, or database entries.",
                parameters={
                    "type": "object",
                    "properties": {
                        "task": {"type": "string", "description": "The task title or name"},
                        "assignee": {"type": "string", "description": "Person assigned to the task (optional)"},
                        "status": {"type": "string", "enum": TASK_STATUSES, "description": "Task status. Defaults to 'Not started'."},
                        "deadline": {"type": "string", "description": "Deadline in ISO format (e.g., 2025-10-30T15:00:00-07:00) (optional)"},
                        "link_url": {"type": "string", "description": "Optional URL for the 'Link' column (e.g., GitHub issue URL)"},
                    },
                    "required": ["task"],
                },
            ),
        ]

    def get_callables(self) -> Dict[str, ToolHandler]:
        return {
            "get_project_context": self.get_project_context,
            "get_notion_page": self.get_notion_page,
            "add_notion_task": self.add_notion_task,
        }

    def _require(self, value: Optional[str], setting: str) -> str:
        if not value:
            raise ToolExecutionError(f"No Notion id given and {setting} is not configured")
        return value

    async def get_project_context(self) -> Dict[str, Any]:
        page_id = self._require(self.config.project_page_id, "NOTION_PAGE_ID")
        blocks = await self._request("GET", f"/blocks/{page_id}/children")
        results = blocks.get("results", [])
        return tool_success(
            {
                "projectPageId": page_id,
                "description": format_blocks(results),
                "rawBlocks": results,
            },
            "Project context retrieved successfully"
        )

    async def get_notion_page(self, page_id: Optional[str] = None, type: str = "database") -> Dict[str, Any]:
        content_type = type or "database"
        if content_type not in CONTENT_TYPES:
            raise ToolExecutionError(f"Invalid type: {content_type}. Must be 'page', 'blocks', or 'database'")

        if not page_id:
            if content_type == "database":
                page_id = self._require(self.config.database_id, "NOTION_DATABASE_ID")
            else:
                page_id = self._require(self.config.project_page_id, "NOTION_PAGE_ID")

        if content_type == "page":
            data = await self._request("GET", f"/pages/{page_id}")
        elif content_type == "blocks":
            data = await self._request("GET", f"/blocks/{page_id}/children")
        else:
            data = await self._request("POST", f"/databases/{page_id}/query", json={"page_size": 100})

        return tool_success(data, f"Retrieved Notion {content_type} {page_id}")

    async def add_notion_task(
        self,
        task: str,
        assignee: Optional[str] = None,
        status: str = "Not started",
        deadline: Optional[str] = None,
        link_url: Optional[str] = None
    ) -> Dict[str, Any]:
        database_id = self._require(self.config.database_id, "NOTION_DATABASE_ID")

        properties: Dict[str, Any] = {
            "Task": {"title": [{"text": {"content": task}}]},
            "Status": {"status": {"name": status or "Not started"}},
        }
        if assignee:
            properties["Assignee"] = {"rich_text": [{"text": {"content": assignee}}]}
        if deadline:
            properties["Deadline"] = {"date": {"start": deadline}}
        if link_url:
            properties["Link"] = {"url": link_url}

        data = await self._request(
            "POST",
            "/pages",
            json={"parent": {"database_id": database_id}, "properties": properties},
        )
        logger.info(f"Created Notion task '{task}'")
        return tool_success(data, f'Task "{task}" created successfully')

    async def test_connection(self) -> ConnectionTestResult:
        """Verify the integration token against /users/me."""
        start_time = datetime.utcnow()
        try:
            data = await self._request("GET", "/users/me")
        except ToolExecutionError as e:
            return ConnectionTestResult(success=False, message=str(e), errors=[str(e)])

        latency = (datetime.utcnow() - start_time).total_seconds() * 1000
        return ConnectionTestResult(
            success=True,
            message="Notion API connection successful",
            latency_ms=latency,
            details={"bot": data.get("name"), "type": data.get("type")},
        )
