"""
Jira Tool Provider

Reads, creates and updates issues through the Jira Cloud REST API v3.
Authenticates with basic auth (account email + API token).
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging

import httpx

from app.core.config import Settings
from app.connectors.base import ToolProviderBase, ProviderRegistry, tool_success
from app.services.tools.executor import ToolExecutionError
from app.services.tools.registry import ToolHandler
from app.services.tools.schema import ToolDescriptor

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 100


@dataclass(frozen=True)
class JiraConfig:
    base_url: str
    email: str
    api_token: str
    project_key: str = "KAN"


def to_adf(text: str) -> Dict[str, Any]:
    """Plain text as a single-paragraph Atlassian Document Format doc"""
    return {
        "type": "doc",
        "version": 1,
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": text}]}
        ],
    }


@ProviderRegistry.register
class JiraProvider(ToolProviderBase):
    PROVIDER_NAME = "jira"
    DISPLAY_NAME = "Jira"

    def __init__(self, config: JiraConfig, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        super().__init__(client=client, timeout=timeout)
        self.config = config

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["JiraProvider"]:
        if not (settings.JIRA_BASE_URL and settings.JIRA_EMAIL and settings.JIRA_API_TOKEN):
            return None
        return cls(
            JiraConfig(
                base_url=settings.JIRA_BASE_URL.rstrip("/"),
                email=settings.JIRA_EMAIL,
                api_token=settings.JIRA_API_TOKEN,
                project_key=settings.JIRA_PROJECT_KEY,
            ),
            timeout=settings.EXTERNAL_API_TIMEOUT,
        )

    @property
    def base_url(self) -> str:
        return self.config.base_url

    def default_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json", "Content-Type": "application/json"}

    def auth(self) -> Optional[httpx.Auth]:
        return httpx.BasicAuth(self.config.email, self.config.api_token)

    def get_descriptors(self) -> List[ToolDescriptor]:
        return [
            ToolDescriptor(
                name="read_all_jira_issues",
                description="Read all issues from a Jira project to find a specific task. Returns a compact list of issues.",
                parameters={
                    "type": "object",
                    "properties": {
                        "project_key": {
                            "type": "string",
                            "description": f"The Jira project key (e.g., '{self.config.project_key}'). Defaults to the configured project key.",
                        },
                        "limit": {
                            "type": "integer",
                            "description": "The maximum number of issues to return (at most 100). Defaults to 100.",
                        },
                    },
                    "required": [],
                },
            ),
            ToolDescriptor(
                name="update_jira_issue",
                description="Update fields on a specific Jira issue, such as its summary or description.",
                parameters={
                    "type": "object",
                    "properties": {
                        "issue_key": {"type": "string", "description": "The key of the issue to update (e.g., 'KAN-123')."},
                        "summary": {"type": "string", "description": "The new summary (title) for the issue."},
                        "description": {"type": "string", "description": "The new description for the issue (in plain text)."},
                    },
                    "required": ["issue_key"],
                },
            ),
            ToolDescriptor(
                name="create_jira_issue",
                description="Create a new issue in a Jira project.",
                parameters={
                    "type": "object",
                    "properties": {
                        "project_key": {"type": "string", "description": "The Jira project key. Defaults to the configured project key."},
                        "summary": {"type": "string", "description": "The summary (title) for the new issue."},
                        "description": {"type": "string", "description": "The description for the new issue (in plain text)."},
                        "issue_type": {"type": "string", "description": "The type of the issue, e.g., 'Task', 'Story', 'Bug'. Defaults to 'Task'."},
                    },
                    "required": ["summary"],
                },
            ),
        ]

    def get_callables(self) -> Dict[str, ToolHandler]:
        return {
            "read_all_jira_issues": self.read_all_jira_issues,
            "update_jira_issue": self.update_jira_issue,
            "create_jira_issue": self.create_jira_issue,
        }

    def browse_url(self, issue_key: str) -> str:
        return f"{self.config.base_url}/browse/{issue_key}"

    async def read_all_jira_issues(self, project_key: Optional[str] = None, limit: int = MAX_SEARCH_RESULTS) -> Dict[str, Any]:
        project_key = project_key or self.config.project_key
        data = await self._request(
            "GET",
            "/rest/api/3/search/jql",
            params={
                "jql": f"project = {project_key} ORDER BY updated DESC",
                "maxResults": max(1, min(int(limit), MAX_SEARCH_RESULTS)),
                "fields": "key,summary,status,updated",
            },
        )

        issues = []
        for issue in data.get("issues", []):
            fields = issue.get("fields") or {}
            issues.append({
                "key": issue.get("key"),
                "summary": fields.get("summary"),
                "status": (fields.get("status") or {}).get("name"),
                "updated": fields.get("updated"),
            })
        return tool_success({"count": len(issues), "issues": issues}, f"Found {len(issues)} issue(s) in {project_key}")

    async def update_jira_issue(
        self,
        issue_key: str,
        summary: Optional[str] = None,
        description: Optional[str] = None
    ) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        if summary:
            fields["summary"] = summary
        if description:
            fields["description"] = to_adf(description)
        if not fields:
            raise ToolExecutionError("Nothing to update. Provide summary or description.")

        await self._request("PUT", f"/rest/api/3/issue/{issue_key}", json={"fields": fields})
        logger.info(f"Updated Jira issue {issue_key}")
        return tool_success(
            {"issueKey": issue_key, "url": self.browse_url(issue_key)},
            "Issue updated successfully."
        )

    async def create_jira_issue(
        self,
        summary: str,
        project_key: Optional[str] = None,
        description: Optional[str] = None,
        issue_type: str = "Task"
    ) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "project": {"key": project_key or self.config.project_key},
            "summary": summary,
            "issuetype": {"name": issue_type or "Task"},
        }
        if description:
            fields["description"] = to_adf(description)

        data = await self._request("POST", "/rest/api/3/issue", json={"fields": fields})
        key = data.get("key")
        logger.info(f"Created Jira issue {key}")
        return tool_success(
            {"key": key, "self": data.get("self"), "url": self.browse_url(key) if key else None},
            f"Created Jira issue {key}"
        )
