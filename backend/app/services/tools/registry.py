"""
Tool Registry - merged, read-only collection of callable tools

Each tool provider contributes descriptors plus a name -> async callable map.
The registry merges them once at startup; duplicate names across providers
are a configuration error and fail immediately. Lookups that miss return None
so the executor can turn them into failure results.
"""

from typing import Dict, Callable, Awaitable, Any, Iterable, List, Optional, Protocol
from dataclasses import dataclass
import logging

from app.services.tools.schema import ToolDescriptor

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Awaitable[Any]]


class DuplicateToolError(ValueError):
    """Raised when two tools are registered under the same name"""
    pass


class ToolProvider(Protocol):
    """Contract every tool provider module implements"""

    PROVIDER_NAME: str

    def get_descriptors(self) -> List[ToolDescriptor]:
        ...

    def get_callables(self) -> Dict[str, ToolHandler]:
        ...


@dataclass(frozen=True)
class RegisteredTool:
    """A tool that has been registered with the registry"""
    descriptor: ToolDescriptor
    handler: ToolHandler
    provider: Optional[str] = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    async def invoke(self, args: Dict[str, Any]) -> Any:
        return await self.handler(**args)


class ToolRegistry:
    """
    Registry of every tool available to the model.

    Build one per application at startup and share it; it is never mutated
    while requests are being served.

    Usage:
        registry = ToolRegistry.from_providers([github_provider, slack_provider])

        # Register an ad-hoc tool
        @registry.register(descriptor)
        async def ping(**kwargs):
            ...

        tool = registry.resolve("create_github_issue")
    """

    def __init__(self) -> None:
        self._tools: Dict[str, RegisteredTool] = {}

    @classmethod
    def from_providers(cls, providers: Iterable[ToolProvider]) -> "ToolRegistry":
        """
        Merge the tools of several providers.

        Raises:
            DuplicateToolError: two providers declare the same tool name
            ValueError: a provider's descriptors and callables do not match
        """
        registry = cls()
        for provider in providers:
            registry.add_provider(provider)
        return registry

    def add_provider(self, provider: ToolProvider) -> None:
        provider_name = getattr(provider, "PROVIDER_NAME", type(provider).__name__)
        descriptors = provider.get_descriptors()
        callables = provider.get_callables()

        declared = {d.name for d in descriptors}
        if declared != set(callables):
            missing = sorted(declared - set(callables))
            extra = sorted(set(callables) - declared)
            raise ValueError(
                f"Provider {provider_name} is inconsistent: "
                f"no callable for {missing}, no descriptor for {extra}"
            )

        for descriptor in descriptors:
            self._add(RegisteredTool(
                descriptor=descriptor,
                handler=callables[descriptor.name],
                provider=provider_name
            ))

    def register(
        self,
        descriptor: ToolDescriptor
    ) -> Callable[[ToolHandler], ToolHandler]:
        """
        Decorator to register a tool handler.

        Usage:
            @registry.register(my_descriptor)
            async def my_tool(**kwargs):
                ...
        """
        def decorator(func: ToolHandler) -> ToolHandler:
            self._add(RegisteredTool(descriptor=descriptor, handler=func))
            return func
        return decorator

    def register_tool(self, descriptor: ToolDescriptor, handler: ToolHandler) -> None:
        """Programmatic registration of a single tool"""
        self._add(RegisteredTool(descriptor=descriptor, handler=handler))

    def _add(self, tool: RegisteredTool) -> None:
        existing = self._tools.get(tool.name)
        if existing is not None:
            raise DuplicateToolError(
                f"Tool '{tool.name}' from {tool.provider or 'ad-hoc registration'} "
                f"collides with one from {existing.provider or 'ad-hoc registration'}"
            )
        self._tools[tool.name] = tool
        logger.info(f"Registered tool: {tool.name}")

    def resolve(self, name: str) -> Optional[RegisteredTool]:
        """Look up a tool by name; None when the model asked for an unknown tool"""
        return self._tools.get(name)

    def list_descriptors(self) -> List[ToolDescriptor]:
        return [tool.descriptor for tool in self._tools.values()]

    def providers(self) -> List[str]:
        """Names of providers contributing at least one tool"""
        seen: List[str] = []
        for tool in self._tools.values():
            if tool.provider and tool.provider not in seen:
                seen.append(tool.provider)
        return seen

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
