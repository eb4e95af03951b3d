"""
Tool Calling System for the ChatOps Assistant

Lets Gemini act on Jira, Notion, GitHub and Slack through function calling.

Main components:
- schema.py: Pydantic models for descriptors, invocation requests and results
- registry.py: Registry merging every enabled provider's tools
- executor.py: Tool execution with validation, timeouts and failure isolation
- agent.py: Bounded agent loop orchestrating model calls and tool rounds
  (import from app.services.tools.agent; it depends on the Gemini gateway)
"""

from app.services.tools.schema import ToolDescriptor, ToolInvocationRequest, ToolExecutionResult
from app.services.tools.registry import ToolRegistry, RegisteredTool, DuplicateToolError
from app.services.tools.executor import ToolExecutor, ToolExecutionError, ToolValidationError

__all__ = [
    "ToolDescriptor",
    "ToolInvocationRequest",
    "ToolExecutionResult",
    "ToolRegistry",
    "RegisteredTool",
    "DuplicateToolError",
    "ToolExecutor",
    "ToolExecutionError",
    "ToolValidationError",
]
