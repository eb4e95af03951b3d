"""
Team Tool Provider

Exposes the team member directory (the users table) to the assistant and
suggests assignees for new work. Always enabled; it only needs the database.
"""

from typing import Any, Callable, Dict, List, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.connectors.base import ToolProviderBase, ProviderRegistry, tool_success
from app.db.session import AsyncSessionLocal
from app.models.user import User
from app.services.team.assignee_scoring import suggest_assignees
from app.services.tools.registry import ToolHandler
from app.services.tools.schema import ToolDescriptor

logger = logging.getLogger(__name__)


def member_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "github_username": user.github_username,
        "github_url": user.github_url,
        "role": user.role,
        "skills": user.skills or [],
        "tags": user.tags or [],
    }


@ProviderRegistry.register
class TeamProvider(ToolProviderBase):
    PROVIDER_NAME = "team"
    DISPLAY_NAME = "Team Directory"

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        default_assignee: Optional[str] = None
    ):
        super().__init__()
        self.session_factory = session_factory
        self.default_assignee = default_assignee

    @classmethod
    def from_settings(cls, settings: Settings) -> "TeamProvider":
        return cls(default_assignee=settings.GITHUB_DEFAULT_ASSIGNEE or settings.GITHUB_OWNER)

    def get_descriptors(self) -> List[ToolDescriptor]:
        return [
            ToolDescriptor(
                name="get_team_members",
                description="List all team members with their roles, skills, tags and GitHub usernames.",
            ),
            ToolDescriptor(
                name="suggest_assignees_for_task",
                description=(
                    "Suggest the best team members to assign to a task based on its title and description. "
                    "Returns ranked candidates and the GitHub usernames to use as assignees."
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "title": {"type": "string", "description": "Task or issue title"},
                        "description": {"type": "string", "description": "Task or issue description"},
                        "limit": {"type": "integer", "description": "How many assignees to recommend (default 1)"},
                    },
                    "required": ["title"],
                },
            ),
        ]

    def get_callables(self) -> Dict[str, ToolHandler]:
        return {
            "get_team_members": self.get_team_members,
            "suggest_assignees_for_task": self.suggest_assignees_for_task,
        }

    async def _load_members(self) -> List[Dict[str, Any]]:
        async with self.session_factory() as db:
            result = await db.execute(select(User).order_by(User.name))
            return [member_to_dict(user) for user in result.scalars().all()]

    async def get_team_members(self) -> Dict[str, Any]:
        members = await self._load_members()
        return tool_success({"members": members, "count": len(members)}, f"Found {len(members)} team member(s)")

    async def suggest_assignees_for_task(
        self,
        title: str,
        description: Optional[str] = None,
        limit: int = 1
    ) -> Dict[str, Any]:
        members = await self._load_members()
        suggestion = suggest_assignees(
            title,
            description,
            members,
            limit=limit,
            default_assignee=self.default_assignee,
        )
        logger.info(f"Suggested assignees for '{title}': {suggestion.github_usernames}")
        return tool_success(suggestion.to_dict(), "Assignee suggestions computed")
