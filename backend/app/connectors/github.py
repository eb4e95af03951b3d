"""
GitHub Tool Provider

Issues, pull requests, recent commits and CodeRabbit review requests for one
configured repository, through the GitHub REST API.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging

import httpx

from app.core.config import Settings
from app.connectors.base import ToolProviderBase, ProviderRegistry, tool_success
from app.services.tools.executor import ToolExecutionError
from app.services.tools.registry import ToolHandler
from app.services.tools.schema import ToolDescriptor

logger = logging.getLogger(__name__)

GITHUB_PAGE_MAX = 100
TIMELINE_MEDIA_TYPE = "application/vnd.github.mockingbird-preview+json"
REVIEW_FOCUS_AREAS = ["security", "performance", "testing", "style", "best-practices", "documentation"]


@dataclass(frozen=True)
class GithubConfig:
    token: str
    owner: str
    repo: str
    default_assignee: Optional[str] = None

    @property
    def fallback_assignee(self) -> str:
        """Who new issues go to when nobody was named"""
        return self.default_assignee or self.owner


def build_review_command(
    review_type: str = "standard",
    focus_areas: Optional[List[str]] = None,
    instructions: Optional[str] = None
) -> str:
    command = "@coderabbitai review"
    if review_type == "full":
        command += " --full"
    elif review_type == "incremental":
        command += " --incremental"
    if focus_areas:
        command += f" focus on {', '.join(focus_areas)}"
    if instructions:
        command += f"\n\n{instructions}"
    return command


def _login(user: Optional[Dict[str, Any]]) -> Optional[str]:
    return (user or {}).get("login")


def _person(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not user:
        return None
    return {
        "login": user.get("login"),
        "avatar_url": user.get("avatar_url"),
        "html_url": user.get("html_url"),
    }


@ProviderRegistry.register
class GithubProvider(ToolProviderBase):
    PROVIDER_NAME = "github"
    DISPLAY_NAME = "GitHub"
    API_BASE_URL = "https://api.github.com"

    def __init__(self, config: GithubConfig, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        super().__init__(client=client, timeout=timeout)
        self.config = config

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["GithubProvider"]:
        if not (settings.GITHUB_TOKEN and settings.GITHUB_OWNER and settings.GITHUB_REPO):
            return None
        return cls(
            GithubConfig(
                token=settings.GITHUB_TOKEN,
                owner=settings.GITHUB_OWNER,
                repo=settings.GITHUB_REPO,
                default_assignee=settings.GITHUB_DEFAULT_ASSIGNEE,
            ),
            timeout=settings.EXTERNAL_API_TIMEOUT,
        )

    def default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.token}",
            "Accept": "application/vnd.github+json",
        }

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.config.owner}/{self.config.repo}"

    def get_descriptors(self) -> List[ToolDescriptor]:
        return [
            ToolDescriptor(
                name="get_daily_commits",
                description="Get repository commits since a given ISO time (default last 24h). Useful when asked to summarize today's commits.",
                parameters={
                    "type": "object",
                    "properties": {
                        "since": {"type": "string", "description": "ISO 8601 timestamp; defaults to 24 hours ago"},
                    },
                    "required": [],
                },
            ),
            ToolDescriptor(
                name="create_github_issue",
                description="Create a GitHub issue in the project repository. Always assigns at least one person.",
                parameters={
                    "type": "object",
                    "properties": {
                        "title": {"type": "string", "description": "Issue title"},
                        "body": {"type": "string", "description": "Issue body/description. Include context and acceptance criteria if available."},
                        "labels": {"type": "array", "items": {"type": "string"}, "description": "Optional list of labels to apply"},
                        "assignees": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "GitHub usernames to assign. Use suggest_assignees_for_task to pick them when unsure.",
                        },
                    },
                    "required": ["title"],
                },
            ),
            ToolDescriptor(
                name="list_github_issues",
                description="List GitHub issues with optional filters (state, labels, assignee). Pull requests are excluded.",
                parameters={
                    "type": "object",
                    "properties": {
                        "state": {"type": "string", "enum": ["open", "closed", "all"], "description": "Filter by issue state"},
                        "labels": {"type": "array", "items": {"type": "string"}, "description": "Only issues with all of these labels"},
                        "assignee": {"type": "string", "description": "Only issues assigned to this GitHub username"},
                        "limit": {"type": "integer", "description": "Maximum number of issues to return (at most 100)"},
                        "sort": {"type": "string", "enum": ["created", "updated", "comments"], "description": "What to sort results by"},
                        "direction": {"type": "string", "enum": ["asc", "desc"], "description": "Sort direction"},
                    },
                    "required": [],
                },
            ),
            ToolDescriptor(
                name="get_github_issue_details",
                description=(
                    "Get detailed information about a specific GitHub issue including full description, "
                    "comments, and optionally the timeline. Use when you need complete context about one issue."
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "issue_number": {"type": "integer", "description": "The issue number to get details for"},
                        "include_comments": {"type": "boolean", "description": "Include all comments on the issue (default: true)"},
                        "include_timeline": {"type": "boolean", "description": "Include the event timeline (default: false)"},
                    },
                    "required": ["issue_number"],
                },
            ),
            ToolDescriptor(
                name="list_pull_requests",
                description="List pull requests in the repository with optional filters.",
                parameters={
                    "type": "object",
                    "properties": {
                        "state": {"type": "string", "enum": ["open", "closed", "all"], "description": "Filter by PR state"},
                        "sort": {"type": "string", "enum": ["created", "updated", "popularity", "long-running"], "description": "What to sort results by"},
                        "direction": {"type": "string", "enum": ["asc", "desc"], "description": "Sort direction"},
                        "limit": {"type": "integer", "description": "Maximum number of PRs to return (at most 100)"},
                    },
                    "required": [],
                },
            ),
            ToolDescriptor(
                name="request_code_rabbit_review",
                description="Ask CodeRabbit to review a pull request by posting a review command comment. Draft PRs are rejected.",
                parameters={
                    "type": "object",
                    "properties": {
                        "pr_number": {"type": "integer", "description": "The pull request number to review"},
                        "review_type": {
                            "type": "string",
                            "enum": ["standard", "full", "incremental"],
                            "description": "'standard' for a normal review, 'full' for all files, 'incremental' for only new changes",
                        },
                        "focus_areas": {
                            "type": "array",
                            "items": {"type": "string", "enum": REVIEW_FOCUS_AREAS},
                            "description": "Optional areas for the review to focus on",
                        },
                        "instructions": {"type": "string", "description": "Optional custom instructions for CodeRabbit"},
                    },
                    "required": ["pr_number"],
                },
            ),
        ]

    def get_callables(self) -> Dict[str, ToolHandler]:
        return {
            "get_daily_commits": self.get_daily_commits,
            "create_github_issue": self.create_github_issue,
            "list_github_issues": self.list_github_issues,
            "get_github_issue_details": self.get_github_issue_details,
            "list_pull_requests": self.list_pull_requests,
            "request_code_rabbit_review": self.request_code_rabbit_review,
        }

    async def get_daily_commits(self, since: Optional[str] = None) -> Dict[str, Any]:
        since_iso = since or (datetime.now(timezone.utc) - timedelta(hours=24)).isoformat().replace("+00:00", "Z")
        items = await self._request("GET", f"{self.repo_path}/commits", params={"since": since_iso})

        commits = []
        for item in items if isinstance(items, list) else []:
            commit = item.get("commit") or {}
            author = commit.get("author") or {}
            commits.append({
                "message": commit.get("message", ""),
                "html_url": item.get("html_url", ""),
                "author": author.get("name") or _login(item.get("author")) or "",
                "timestamp": author.get("date", ""),
                "sha": item.get("sha", ""),
            })

        return tool_success(
            {
                "owner": self.config.owner,
                "repo": self.config.repo,
                "since": since_iso,
                "count": len(commits),
                "commits": commits,
            },
            f"Fetched {len(commits)} commits since {since_iso}"
        )

    async def create_github_issue(
        self,
        title: str,
        body: str = "",
        labels: Optional[List[str]] = None,
        assignees: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        assignees = [a for a in (assignees or []) if a] or [self.config.fallback_assignee]
        data = await self._request(
            "POST",
            f"{self.repo_path}/issues",
            json={"title": title, "body": body or "", "labels": labels or [], "assignees": assignees},
        )
        logger.info(f"Created GitHub issue #{data.get('number')}")
        return tool_success(
            {
                "number": data.get("number"),
                "html_url": data.get("html_url"),
                "title": data.get("title"),
                "state": data.get("state"),
                "assignees": assignees,
            },
            f"Issue #{data.get('number')} created: {data.get('html_url')}"
        )

    async def list_github_issues(
        self,
        state: str = "open",
        labels: Optional[List[str]] = None,
        assignee: Optional[str] = None,
        limit: int = 30,
        sort: str = "created",
        direction: str = "desc"
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "state": state,
            "per_page": max(1, min(int(limit), GITHUB_PAGE_MAX)),
            "sort": sort,
            "direction": direction,
        }
        if labels:
            params["labels"] = ",".join(labels)
        if assignee:
            params["assignee"] = assignee

        items = await self._request("GET", f"{self.repo_path}/issues", params=params)

        # The issues endpoint also returns pull requests
        issues = [
            {
                "number": issue.get("number"),
                "title": issue.get("title"),
                "state": issue.get("state"),
                "labels": [label.get("name") for label in issue.get("labels") or []],
                "assignee": _login(issue.get("assignee")),
                "assignees": [_login(a) for a in issue.get("assignees") or []],
                "created_at": issue.get("created_at"),
                "updated_at": issue.get("updated_at"),
                "closed_at": issue.get("closed_at"),
                "comments_count": issue.get("comments") or 0,
                "html_url": issue.get("html_url"),
                "author": _login(issue.get("user")) or "unknown",
            }
            for issue in (items if isinstance(items, list) else [])
            if not issue.get("pull_request")
        ]

        return tool_success(
            {
                "owner": self.config.owner,
                "repo": self.config.repo,
                "count": len(issues),
                "filters": {"state": state, "labels": labels or [], "assignee": assignee, "sort": sort, "direction": direction},
                "issues": issues,
            },
            f"Found {len(issues)} issue(s) matching the criteria"
        )

    async def get_github_issue_details(
        self,
        issue_number: int,
        include_comments: bool = True,
        include_timeline: bool = False
    ) -> Dict[str, Any]:
        issue_path = f"{self.repo_path}/issues/{issue_number}"
        issue = await self._request("GET", issue_path)

        if issue.get("pull_request"):
            raise ToolExecutionError(
                f"#{issue_number} is a pull request, not an issue. Use list_pull_requests instead."
            )

        milestone = issue.get("milestone")
        details: Dict[str, Any] = {
            "number": issue.get("number"),
            "title": issue.get("title"),
            "body": issue.get("body") or "",
            "state": issue.get("state"),
            "labels": [
                {"name": label.get("name"), "color": label.get("color"), "description": label.get("description") or ""}
                for label in issue.get("labels") or []
            ],
            "author": _person(issue.get("user")),
            "assignee": _person(issue.get("assignee")),
            "assignees": [_person(a) for a in issue.get("assignees") or []],
            "milestone": {
                "title": milestone.get("title"),
                "description": milestone.get("description") or "",
                "due_on": milestone.get("due_on"),
                "state": milestone.get("state"),
            } if milestone else None,
            "created_at": issue.get("created_at"),
            "updated_at": issue.get("updated_at"),
            "closed_at": issue.get("closed_at"),
            "comments_count": issue.get("comments") or 0,
            "html_url": issue.get("html_url"),
            "comments": [],
        }

        if include_comments and details["comments_count"] > 0:
            try:
                comments = await self._request("GET", f"{issue_path}/comments")
                details["comments"] = [
                    {
                        "id": comment.get("id"),
                        "user": _person(comment.get("user")),
                        "body": comment.get("body") or "",
                        "created_at": comment.get("created_at"),
                        "updated_at": comment.get("updated_at"),
                        "html_url": comment.get("html_url"),
                    }
                    for comment in comments
                ]
            except ToolExecutionError as e:
                logger.warning(f"Failed to fetch comments for issue #{issue_number}: {e}")
                details["comments_error"] = "Failed to fetch comments"

        if include_timeline:
            try:
                events = await self._request(
                    "GET",
                    f"{issue_path}/timeline",
                    headers={"Accept": TIMELINE_MEDIA_TYPE},
                )
                details["timeline"] = [self._timeline_event(event) for event in events]
            except ToolExecutionError as e:
                logger.warning(f"Failed to fetch timeline for issue #{issue_number}: {e}")
                details["timeline"] = []
                details["timeline_error"] = "Failed to fetch timeline"

        return tool_success(details, f"Retrieved details for issue #{issue_number}")

    @staticmethod
    def _timeline_event(event: Dict[str, Any]) -> Dict[str, Any]:
        actor = event.get("actor")
        entry: Dict[str, Any] = {
            "id": event.get("id"),
            "event": event.get("event"),
            "actor": {"login": actor.get("login"), "avatar_url": actor.get("avatar_url")} if actor else None,
            "created_at": event.get("created_at"),
        }
        if event.get("label"):
            entry["label"] = event["label"]
        if event.get("assignee"):
            entry["assignee"] = _login(event["assignee"])
        if event.get("milestone"):
            entry["milestone"] = event["milestone"].get("title")
        for key in ("commit_id", "commit_url", "source"):
            if event.get(key):
                entry[key] = event[key]
        return entry

    async def list_pull_requests(
        self,
        state: str = "open",
        sort: str = "created",
        direction: str = "desc",
        limit: int = 30
    ) -> Dict[str, Any]:
        items = await self._request(
            "GET",
            f"{self.repo_path}/pulls",
            params={
                "state": state,
                "sort": sort,
                "direction": direction,
                "per_page": max(1, min(int(limit), GITHUB_PAGE_MAX)),
            },
        )

        pull_requests = [
            {
                "number": pr.get("number"),
                "title": pr.get("title"),
                "state": pr.get("state"),
                "draft": bool(pr.get("draft")),
                "author": _login(pr.get("user")) or "unknown",
                "created_at": pr.get("created_at"),
                "updated_at": pr.get("updated_at"),
                "closed_at": pr.get("closed_at"),
                "merged_at": pr.get("merged_at"),
                "head": {"ref": (pr.get("head") or {}).get("ref", ""), "sha": (pr.get("head") or {}).get("sha", "")},
                "base": {"ref": (pr.get("base") or {}).get("ref", ""), "sha": (pr.get("base") or {}).get("sha", "")},
                "requested_reviewers": [_login(r) for r in pr.get("requested_reviewers") or []],
                "labels": [label.get("name") for label in pr.get("labels") or []],
                "html_url": pr.get("html_url"),
            }
            for pr in (items if isinstance(items, list) else [])
        ]

        return tool_success(
            {
                "owner": self.config.owner,
                "repo": self.config.repo,
                "count": len(pull_requests),
                "filters": {"state": state, "sort": sort, "direction": direction},
                "pullRequests": pull_requests,
            },
            f"Found {len(pull_requests)} pull request(s) matching the criteria"
        )

    async def request_code_rabbit_review(
        self,
        pr_number: int,
        review_type: str = "standard",
        focus_areas: Optional[List[str]] = None,
        instructions: Optional[str] = None
    ) -> Dict[str, Any]:
        pr = await self._request("GET", f"{self.repo_path}/pulls/{pr_number}")
        if pr.get("draft"):
            raise ToolExecutionError(
                f"PR #{pr_number} is a draft. CodeRabbit skips draft PRs. Convert it to a regular PR first."
            )

        command = build_review_command(review_type, focus_areas, instructions)
        comment = await self._request(
            "POST",
            f"{self.repo_path}/issues/{pr_number}/comments",
            json={"body": command},
        )
        logger.info(f"Requested CodeRabbit review on PR #{pr_number}")

        return tool_success(
            {
                "prNumber": pr_number,
                "prTitle": pr.get("title"),
                "prUrl": pr.get("html_url"),
                "prState": pr.get("state"),
                "reviewType": review_type,
                "focusAreas": focus_areas or [],
                "command": command,
                "commentId": comment.get("id"),
                "commentUrl": comment.get("html_url"),
            },
            f"CodeRabbit review triggered for PR #{pr_number}. Check {pr.get('html_url')} for results in 1-2 minutes."
        )
