"""
Slack Tool Provider

Posts channel messages and DMs, uploads files by URL, looks up users by email
and reads channel, DM or thread history through the Slack Web API.

Slack answers most failures with HTTP 200 and {"ok": false, "error": ...};
those are raised as ToolExecutionError like any other upstream failure.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import logging

import httpx

from app.core.config import Settings
from app.connectors.base import ToolProviderBase, ProviderRegistry, tool_success
from app.services.tools.executor import ToolExecutionError
from app.services.tools.registry import ToolHandler
from app.services.tools.schema import ToolDescriptor

logger = logging.getLogger(__name__)

CHANNEL_NAMES = ["general", "backend", "frontend"]
HISTORY_LIMIT_MAX = 200
DM_FALLBACK_ERRORS = ("channel_not_found", "not_in_channel")
UPLOAD_MAX_BYTES = 100 * 1024 * 1024


@dataclass(frozen=True)
class SlackConfig:
    token: str
    channels: Dict[str, str] = field(default_factory=dict)

    def channel_for(self, name: Optional[str]) -> Optional[str]:
        """Map a friendly channel name to its ID; unknown names fall back to general"""
        key = (name or "general").lower()
        return self.channels.get(key) or self.channels.get("general")


@ProviderRegistry.register
class SlackProvider(ToolProviderBase):
    PROVIDER_NAME = "slack"
    DISPLAY_NAME = "Slack"
    API_BASE_URL = "https://slack.com/api"

    def __init__(
        self,
        config: SlackConfig,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        download_client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(client=client, timeout=timeout)
        self.config = config
        # Fetches files from arbitrary URLs, so it never carries the Slack token
        self._download_client = download_client

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["SlackProvider"]:
        if not settings.SLACK_USER_TOKEN:
            return None
        channels = {
            "general": settings.SLACK_CHANNEL_GENERAL,
            "backend": settings.SLACK_CHANNEL_BACKEND,
            "frontend": settings.SLACK_CHANNEL_FRONTEND,
        }
        return cls(
            SlackConfig(
                token=settings.SLACK_USER_TOKEN,
                channels={name: channel for name, channel in channels.items() if channel},
            ),
            timeout=settings.EXTERNAL_API_TIMEOUT,
        )

    def default_headers(self) -> Dict[str, str]:
        # No fixed Content-Type: httpx sets JSON or multipart per request
        return {"Authorization": f"Bearer {self.config.token}"}

    def get_descriptors(self) -> List[ToolDescriptor]:
        return [
            ToolDescriptor(
                name="post_slack_message",
                description="Post a message to a Slack channel. If no channel is provided, defaults to the 'general' mapped channel.",
                parameters={
                    "type": "object",
                    "properties": {
                        "channel": {"type": "string", "description": "Channel ID to post to (e.g., C0123456789). For DMs, prefer dm_slack_user."},
                        "channel_name": {
                            "type": "string",
                            "enum": CHANNEL_NAMES,
                            "description": "Friendly channel name mapped to a configured channel ID. Defaults to 'general'.",
                        },
                        "text": {"type": "string", "description": "Message text to send"},
                        "thread_ts": {"type": "string", "description": "Optional thread timestamp to reply in a thread"},
                    },
                    "required": ["text"],
                },
            ),
            ToolDescriptor(
                name="dm_slack_user",
                description="Send a direct message to a Slack user by user_id or email. Automatically opens a DM if needed.",
                parameters={
                    "type": "object",
                    "properties": {
                        "user_id": {"type": "string", "description": "Slack user ID (e.g., U123...)"},
                        "email": {"type": "string", "description": "User email to resolve to an ID"},
                        "text": {"type": "string", "description": "Message text to send"},
                    },
                    "required": ["text"],
                },
            ),
            ToolDescriptor(
                name="get_slack_user_by_email",
                description="Look up a Slack user profile by email address.",
                parameters={
                    "type": "object",
                    "properties": {"email": {"type": "string", "description": "User email"}},
                    "required": ["email"],
                },
            ),
            ToolDescriptor(
                name="upload_slack_file_by_url",
                description="Upload a file to Slack by URL. Can target channels or a DM thread.",
                parameters={
                    "type": "object",
                    "properties": {
                        "file_url": {"type": "string", "description": "Publicly accessible file URL"},
                        "channels": {
                            "type": "array",
                            "items": {"type": "string"},
                            "description": "Optional list of channel IDs to upload into",
                        },
                        "thread_ts": {"type": "string", "description": "Optional thread timestamp to attach the file in"},
                        "filename": {"type": "string", "description": "Override filename"},
                        "title": {"type": "string", "description": "Optional title for the file"},
                        "initial_comment": {"type": "string", "description": "Optional message posted with the file"},
                    },
                    "required": ["file_url"],
                },
            ),
            ToolDescriptor(
                name="get_slack_chat_history",
                description=(
                    "Fetch recent chat messages from a channel or DM, optionally a specific thread. "
                    "Use this to summarize conversations."
                ),
                parameters={
                    "type": "object",
                    "properties": {
                        "channel": {"type": "string", "description": "Channel ID. If not provided, give channel_name, user_id or email"},
                        "channel_name": {"type": "string", "enum": CHANNEL_NAMES, "description": "Friendly channel name (e.g., 'general')"},
                        "user_id": {"type": "string", "description": "Slack user ID whose DM to read"},
                        "email": {"type": "string", "description": "Email to resolve a user whose DM to read"},
                        "thread_ts": {"type": "string", "description": "If provided, fetch replies for this thread only"},
                        "limit": {"type": "integer", "description": "Max messages to return (at most 200, default 50)"},
                        "oldest": {"type": "string", "description": "Oldest message ts to include"},
                        "latest": {"type": "string", "description": "Latest message ts to include"},
                        "inclusive": {"type": "boolean", "description": "Include messages at the oldest/latest timestamps (default true)"},
                    },
                    "required": [],
                },
            ),
        ]

    def get_callables(self) -> Dict[str, ToolHandler]:
        return {
            "post_slack_message": self.post_slack_message,
            "dm_slack_user": self.dm_slack_user,
            "get_slack_user_by_email": self.get_slack_user_by_email,
            "upload_slack_file_by_url": self.upload_slack_file_by_url,
            "get_slack_chat_history": self.get_slack_chat_history,
        }

    async def aclose(self) -> None:
        await super().aclose()
        if self._download_client is not None and not self._download_client.is_closed:
            await self._download_client.aclose()

    async def _call(
        self,
        method: str,
        endpoint: str,
        tolerated_errors: Sequence[str] = (),
        **kwargs: Any
    ) -> Dict[str, Any]:
        """Call a Web API method, raising on ok=false unless the error is tolerated"""
        data = await self._request(method, endpoint, **kwargs)
        if not data.get("ok"):
            error = data.get("error") or "slack_error"
            if error in tolerated_errors:
                return data
            logger.warning(f"Slack {endpoint} failed: {error}")
            raise ToolExecutionError(f"Slack API error ({endpoint}): {error}")
        return data

    async def _resolve_user_id(self, user_id: Optional[str], email: Optional[str]) -> str:
        if user_id:
            return user_id
        if not email:
            raise ToolExecutionError("user_id or email is required")
        lookup = await self._call("GET", "/users.lookupByEmail", params={"email": email})
        return (lookup.get("user") or {}).get("id")

    async def _open_dm(self, user_id: str) -> str:
        opened = await self._call("POST", "/conversations.open", json={"users": user_id})
        return (opened.get("channel") or {}).get("id")

    async def get_slack_user_by_email(self, email: str) -> Dict[str, Any]:
        data = await self._call("GET", "/users.lookupByEmail", params={"email": email})
        return tool_success(data.get("user"), "User found")

    async def post_slack_message(
        self,
        text: str,
        channel: Optional[str] = None,
        channel_name: Optional[str] = None,
        thread_ts: Optional[str] = None
    ) -> Dict[str, Any]:
        target = channel or self.config.channel_for(channel_name)
        if not target:
            raise ToolExecutionError("No channel given and no default Slack channel is configured")

        body: Dict[str, Any] = {"channel": target, "text": text}
        if thread_ts:
            body["thread_ts"] = thread_ts
        data = await self._call("POST", "/chat.postMessage", json=body)
        logger.info(f"Posted Slack message to {target}")
        return tool_success(data, "Message posted")

    async def dm_slack_user(
        self,
        text: str,
        user_id: Optional[str] = None,
        email: Optional[str] = None
    ) -> Dict[str, Any]:
        if not user_id and not email:
            raise ToolExecutionError("text and (user_id or email) are required")
        user_id = await self._resolve_user_id(user_id, email)

        data = await self._call(
            "POST",
            "/chat.postMessage",
            tolerated_errors=DM_FALLBACK_ERRORS,
            json={"channel": user_id, "text": text},
        )
        if not data.get("ok"):
            # Posting to a user id needs an open DM for some token types
            dm_channel = await self._open_dm(user_id)
            data = await self._call("POST", "/chat.postMessage", json={"channel": dm_channel, "text": text})

        logger.info(f"Sent Slack DM to {user_id}")
        return tool_success(data, "DM sent")

    async def _download(self, file_url: str) -> bytes:
        if self._download_client is None or self._download_client.is_closed:
            self._download_client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)

        chunks: List[bytes] = []
        size = 0
        try:
            async with self._download_client.stream("GET", file_url) as response:
                if response.status_code >= 400:
                    raise ToolExecutionError(f"Could not download {file_url}: HTTP {response.status_code}")
                async for chunk in response.aiter_bytes():
                    size += len(chunk)
                    if size > UPLOAD_MAX_BYTES:
                        raise ToolExecutionError(f"File at {file_url} is larger than {UPLOAD_MAX_BYTES} bytes")
                    chunks.append(chunk)
        except httpx.HTTPError as e:
            raise ToolExecutionError(f"Could not download {file_url}: {type(e).__name__}: {e}")
        return b"".join(chunks)

    async def upload_slack_file_by_url(
        self,
        file_url: str,
        channels: Optional[List[str]] = None,
        thread_ts: Optional[str] = None,
        filename: Optional[str] = None,
        title: Optional[str] = None,
        initial_comment: Optional[str] = None
    ) -> Dict[str, Any]:
        if not file_url:
            raise ToolExecutionError("file_url is required")

        content = await self._download(file_url)
        name = filename or httpx.URL(file_url).path.rsplit("/", 1)[-1] or "upload"

        form: Dict[str, str] = {}
        if isinstance(channels, str):
            channels = [channels]
        targets = [c.strip() for c in channels or [] if c and c.strip()]
        if targets:
            form["channels"] = ",".join(targets)
        if thread_ts:
            form["thread_ts"] = thread_ts
        if title:
            form["title"] = title
        if initial_comment:
            form["initial_comment"] = initial_comment

        data = await self._call("POST", "/files.upload", data=form, files={"file": (name, content)})
        logger.info(f"Uploaded {name} ({len(content)} bytes) to Slack")
        return tool_success(data, "File uploaded")

    async def get_slack_chat_history(
        self,
        channel: Optional[str] = None,
        channel_name: Optional[str] = None,
        user_id: Optional[str] = None,
        email: Optional[str] = None,
        thread_ts: Optional[str] = None,
        limit: int = 50,
        oldest: Optional[str] = None,
        latest: Optional[str] = None,
        inclusive: bool = True
    ) -> Dict[str, Any]:
        if not channel and channel_name:
            channel = self.config.channels.get(channel_name.lower())
        if not channel and (user_id or email):
            channel = await self._open_dm(await self._resolve_user_id(user_id, email))
        if not channel:
            channel = self.config.channels.get("general")
        if not channel:
            raise ToolExecutionError("No channel given and no default Slack channel is configured")

        endpoint = "/conversations.replies" if thread_ts else "/conversations.history"
        params: Dict[str, Any] = {
            "channel": channel,
            "limit": max(1, min(int(limit), HISTORY_LIMIT_MAX)),
            "inclusive": 1 if inclusive else 0,
        }
        if oldest:
            params["oldest"] = oldest
        if latest:
            params["latest"] = latest
        if thread_ts:
            params["ts"] = thread_ts

        data = await self._call("GET", endpoint, params=params)
        messages = [
            {
                "ts": m.get("ts"),
                "user": m.get("user") or m.get("username"),
                "text": m.get("text") or "",
                "thread_ts": m.get("thread_ts"),
                "reply_count": m.get("reply_count") or 0,
                "subtype": m.get("subtype"),
            }
            for m in data.get("messages") or []
        ]
        return tool_success(
            {
                "channel": channel,
                "threadTs": thread_ts,
                "count": len(messages),
                "messages": messages,
            },
            f"Fetched {len(messages)} message(s)"
        )
