"""
Tool Executor - runs model-requested tool calls against the registry

Every request produces exactly one ToolExecutionResult. Unknown tools,
invalid arguments, timeouts and tool exceptions all become failure results;
nothing a tool does can abort the batch or the conversation turn.
"""

from typing import Dict, Any, List, Optional, Sequence
import asyncio
import time
import logging

from app.core.config import settings
from app.services.tools.registry import ToolRegistry
from app.services.tools.schema import ToolInvocationRequest, ToolExecutionResult

logger = logging.getLogger(__name__)


class ToolExecutionError(Exception):
    """Raised by tool providers when the upstream service rejects a call"""
    pass


class ToolValidationError(Exception):
    """Raised when tool parameters are invalid"""
    pass


class ToolExecutor:
    """
    Executes tool invocation requests with validation and a per-call timeout.

    The executor treats a tool's return value as opaque. Providers may return
    their own {success, data} envelopes; those are passed through untouched.
    """

    def __init__(self, registry: ToolRegistry, timeout_ms: Optional[int] = None):
        self.registry = registry
        self.timeout_ms = settings.TOOL_CALL_TIMEOUT_MS if timeout_ms is None else timeout_ms
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")

    async def execute(self, request: ToolInvocationRequest) -> ToolExecutionResult:
        """
        Execute one tool call.

        Returns:
            ToolExecutionResult; never raises for tool-level problems
        """
        start_time = time.monotonic()
        tool = self.registry.resolve(request.name)
        if tool is None:
            logger.warning(f"Model requested unknown tool: {request.name}")
            return ToolExecutionResult.failed(request.name, f"tool not found: {request.name}")

        try:
            arguments = self._validate_arguments(request.name, request.args, tool.descriptor.parameters)
        except ToolValidationError as e:
            logger.warning(f"Rejected arguments for {request.name}: {e}")
            return ToolExecutionResult.failed(request.name, str(e))

        try:
            result = await asyncio.wait_for(tool.invoke(arguments), timeout=self.timeout_ms / 1000)
        except asyncio.TimeoutError:
            elapsed = self._elapsed_ms(start_time)
            logger.error(f"Tool {request.name} timed out after {elapsed}ms")
            return ToolExecutionResult.failed(
                request.name,
                f"Tool execution timed out after {self.timeout_ms}ms",
                execution_time_ms=elapsed
            )
        except Exception as e:
            elapsed = self._elapsed_ms(start_time)
            logger.error(f"Tool {request.name} failed: {type(e).__name__}: {e}")
            return ToolExecutionResult.failed(
                request.name,
                str(e) or type(e).__name__,
                execution_time_ms=elapsed
            )

        elapsed = self._elapsed_ms(start_time)
        logger.info(f"Tool {request.name} executed in {elapsed}ms")
        return ToolExecutionResult.succeeded(request.name, result, execution_time_ms=elapsed)

    async def execute_batch(
        self,
        requests: Sequence[ToolInvocationRequest]
    ) -> List[ToolExecutionResult]:
        """
        Execute a batch of tool calls concurrently.

        Results are positionally aligned with `requests`.
        """
        if not requests:
            return []

        outcomes = await asyncio.gather(
            *(self.execute(request) for request in requests),
            return_exceptions=True
        )

        results: List[ToolExecutionResult] = []
        for request, outcome in zip(requests, outcomes):
            if isinstance(outcome, ToolExecutionResult):
                results.append(outcome)
            elif isinstance(outcome, Exception):
                # execute() already recovers tool errors; this covers bugs in the executor itself
                logger.error(f"Unexpected executor failure for {request.name}: {outcome}")
                results.append(ToolExecutionResult.failed(request.name, str(outcome) or type(outcome).__name__))
            else:
                raise outcome
        return results

    def _validate_arguments(
        self,
        tool_name: str,
        arguments: Dict[str, Any],
        schema: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Validate tool arguments against the JSON schema.

        Returns the arguments with unknown and null parameters removed.
        Raises ToolValidationError if validation fails.
        """
        properties = schema.get("properties", {})
        required = schema.get("required", [])

        for param in required:
            if arguments.get(param) is None:
                raise ToolValidationError(f"Missing required parameter: {param}")

        accepted: Dict[str, Any] = {}
        for param_name, param_value in arguments.items():
            if param_name not in properties:
                logger.warning(f"Dropping unknown parameter {param_name} for tool {tool_name}")
                continue

            param_spec = properties[param_name]
            expected_type = param_spec.get("type")
            enum_values = param_spec.get("enum")

            if param_value is None:
                # Explicit nulls fall back to the handler default
                continue

            if expected_type and not self._check_type(param_value, expected_type):
                raise ToolValidationError(
                    f"Parameter {param_name} should be {expected_type}, got {type(param_value).__name__}"
                )
            if enum_values and param_value not in enum_values:
                raise ToolValidationError(
                    f"Parameter {param_name} must be one of: {', '.join(str(v) for v in enum_values)}"
                )
            if expected_type == "integer" and isinstance(param_value, float):
                param_value = int(param_value)

            accepted[param_name] = param_value

        return accepted

    def _check_type(self, value: Any, expected: str) -> bool:
        """Check if value matches expected JSON Schema type"""
        if expected in ("integer", "number") and isinstance(value, bool):
            return False
        # Gemini sends JSON numbers as floats even for integer parameters
        if expected == "integer" and isinstance(value, float):
            return value.is_integer()
        type_map = {
            "string": str,
            "number": (int, float),
            "integer": int,
            "boolean": bool,
            "array": list,
            "object": dict,
        }
        expected_types = type_map.get(expected)
        if expected_types is None:
            return True
        return isinstance(value, expected_types)

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.monotonic() - start_time) * 1000)
