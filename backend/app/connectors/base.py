"""
Base Tool Provider Interface

Abstract base class and supporting types for every integration that exposes
tools to the assistant (Jira, Notion, GitHub, Slack, team directory).

A provider contributes:
- get_descriptors(): the tool schemas Gemini sees
- get_callables(): tool name -> async callable taking the tool's arguments

Tool callables return {"success": True, "data": ..., "message": ...} and raise
ToolExecutionError when the upstream service rejects the call, so the executor
records the failure with the upstream message.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Type
import logging

import httpx

from app.core.config import Settings
from app.services.tools.executor import ToolExecutionError
from app.services.tools.registry import ToolHandler
from app.services.tools.schema import ToolDescriptor

logger = logging.getLogger(__name__)


@dataclass
class ConnectionTestResult:
    """Result of testing a provider's connection"""
    success: bool
    message: str
    latency_ms: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    tested_at: datetime = field(default_factory=datetime.utcnow)


def tool_success(data: Any, message: str) -> Dict[str, Any]:
    """Envelope every provider tool returns on success"""
    return {"success": True, "data": data, "message": message}


def describe_http_error(response: httpx.Response) -> str:
    """Best-effort extraction of an upstream error message"""
    try:
        body = response.json()
    except ValueError:
        body = None

    detail = None
    if isinstance(body, dict):
        detail = (
            body.get("message")
            or body.get("error")
            or "; ".join(body.get("errorMessages") or [])
            or (", ".join(f"{k}: {v}" for k, v in (body.get("errors") or {}).items())
                if isinstance(body.get("errors"), dict) else None)
        )
    if not detail:
        detail = response.text[:200] if response.text else response.reason_phrase
    return f"HTTP {response.status_code}: {detail}"


class ToolProviderBase(ABC):
    """
    Abstract base class for all tool providers.

    Subclasses set the class-level metadata, implement the tool surface and
    build themselves from settings (returning None when credentials are
    missing so the provider is simply left out).
    """

    PROVIDER_NAME: str = "base"
    DISPLAY_NAME: str = "Base Provider"
    API_BASE_URL: str = ""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout

    @classmethod
    @abstractmethod
    def from_settings(cls, settings: Settings) -> Optional["ToolProviderBase"]:
        """Build the provider from settings, or None when it is not configured"""
        pass

    @abstractmethod
    def get_descriptors(self) -> List[ToolDescriptor]:
        pass

    @abstractmethod
    def get_callables(self) -> Dict[str, ToolHandler]:
        pass

    @property
    def base_url(self) -> str:
        return self.API_BASE_URL

    def default_headers(self) -> Dict[str, str]:
        return {}

    def auth(self) -> Optional[httpx.Auth]:
        return None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with authentication."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.default_headers(),
                auth=self.auth(),
                timeout=self.timeout
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        **kwargs: Any
    ) -> Any:
        """
        Send a request and return the decoded JSON body.

        Raises:
            ToolExecutionError: network failure or non-2xx response
        """
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            raise ToolExecutionError(f"{self.DISPLAY_NAME} request timed out: {method} {path}")
        except httpx.HTTPError as e:
            raise ToolExecutionError(f"{self.DISPLAY_NAME} request failed: {type(e).__name__}: {e}")

        if response.status_code >= 400:
            message = describe_http_error(response)
            logger.warning(f"{self.DISPLAY_NAME} {method} {path} -> {message}")
            raise ToolExecutionError(f"{self.DISPLAY_NAME} API error: {message}")

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            raise ToolExecutionError(f"{self.DISPLAY_NAME} returned a non-JSON response for {method} {path}")


class ProviderRegistry:
    """
    Registry of available tool provider implementations.

    Usage:
        @ProviderRegistry.register
        class MyProvider(ToolProviderBase):
            ...

        providers = ProviderRegistry.build_enabled(settings)
    """

    _providers: Dict[str, Type[ToolProviderBase]] = {}

    @classmethod
    def register(cls, provider_class: Type[ToolProviderBase]) -> Type[ToolProviderBase]:
        cls._providers[provider_class.PROVIDER_NAME] = provider_class
        logger.debug(f"Registered provider class: {provider_class.PROVIDER_NAME}")
        return provider_class

    @classmethod
    def get(cls, provider_name: str) -> Optional[Type[ToolProviderBase]]:
        return cls._providers.get(provider_name)

    @classmethod
    def list_all(cls) -> List[str]:
        return list(cls._providers.keys())

    @classmethod
    def build_enabled(cls, settings: Settings) -> List[ToolProviderBase]:
        """Instantiate every provider whose configuration is present"""
        providers = []
        for name, provider_class in cls._providers.items():
            provider = provider_class.from_settings(settings)
            if provider is None:
                logger.info(f"{provider_class.DISPLAY_NAME} not configured; its tools are disabled")
                continue
            providers.append(provider)
        logger.info(f"Enabled tool providers: {', '.join(p.PROVIDER_NAME for p in providers) or 'none'}")
        return providers
