"""
Tool Providers Package

Each module wraps one external service and exposes its operations as tools
the assistant can call through Gemini function calling.

Supported services:
- Jira: read, create and update issues
- Notion: project context, pages, databases and tasks
- GitHub: commits, issues, pull requests, CodeRabbit reviews
- Slack: channel messages, DMs, user lookup and history
- Team: member directory and assignee suggestions
"""

from app.connectors.base import (
    ToolProviderBase,
    ConnectionTestResult,
    ProviderRegistry,
    tool_success,
)

# Import concrete implementations (they auto-register via decorator)
from app.connectors.jira import JiraProvider
from app.connectors.notion import NotionProvider
from app.connectors.github import GithubProvider
from app.connectors.slack import SlackProvider
from app.connectors.team import TeamProvider

__all__ = [
    # Base classes
    "ToolProviderBase",
    "ConnectionTestResult",
    "ProviderRegistry",
    "tool_success",
    # Concrete implementations
    "JiraProvider",
    "NotionProvider",
    "GithubProvider",
    "SlackProvider",
    "TeamProvider",
]
