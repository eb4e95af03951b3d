"""
Tool Schema - descriptor, invocation request and execution result models

Descriptors use the JSON-schema parameter format that Gemini function
declarations accept. Requests and results are paired by position within a
batch; the model does not issue call ids.
"""

import json
from typing import Dict, Any, Optional

from pydantic import BaseModel, Field


class ToolDescriptor(BaseModel):
    """
    A named, schema-described capability exposed to the model.

    Immutable once registered.
    """
    name: str = Field(..., description="Unique tool identifier (snake_case)")
    description: str = Field(..., description="What the tool does and when the model should call it")
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []},
        description="JSON Schema for the tool's parameters"
    )

    class Config:
        frozen = True

    @property
    def required_parameters(self) -> list:
        return list(self.parameters.get("required", []))

    def to_gemini_declaration(self) -> Dict[str, Any]:
        """Keyword arguments for genai_types.FunctionDeclaration"""
        declaration: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
        }
        # Gemini rejects an object schema with no properties
        if self.parameters.get("properties"):
            declaration["parameters"] = self.parameters
        return declaration

    def to_prompt_line(self) -> str:
        return f"- {self.name}: {self.description}"


class ToolInvocationRequest(BaseModel):
    """A single tool call requested by the model"""
    name: str = Field(..., description="Name of the tool to call")
    args: Dict[str, Any] = Field(
        default_factory=dict,
        description="Arguments to pass to the tool"
    )

    def to_record(self) -> Dict[str, Any]:
        return {"name": self.name, "args": self.args}

    def describe(self) -> str:
        rendered = ", ".join(f"{key}={json.dumps(value, default=str)}" for key, value in self.args.items())
        return f"{self.name}({rendered})"


class ToolExecutionResult(BaseModel):
    """
    Outcome of one ToolInvocationRequest.

    `result` is only meaningful when `success` is True and `error` only when
    it is False.
    """
    name: str
    success: bool
    result: Optional[Any] = None
    error: Optional[str] = None
    execution_time_ms: int = 0

    @classmethod
    def succeeded(cls, name: str, result: Any, execution_time_ms: int = 0) -> "ToolExecutionResult":
        return cls(name=name, success=True, result=result, execution_time_ms=execution_time_ms)

    @classmethod
    def failed(cls, name: str, error: str, execution_time_ms: int = 0) -> "ToolExecutionResult":
        return cls(name=name, success=False, error=error, execution_time_ms=execution_time_ms)

    def to_record(self) -> Dict[str, Any]:
        """Persisted/API shape: {name, success, result} or {name, success, error}"""
        if self.success:
            return {"name": self.name, "success": True, "result": self.result}
        return {"name": self.name, "success": False, "error": self.error}

    def to_summary_line(self) -> str:
        """Render for the model without hiding the success flag"""
        if self.success:
            payload = json.dumps(self.result, indent=2, default=str)
            return f"Tool {self.name} succeeded with payload: {payload}"
        return f"Tool {self.name} failed with reason: {self.error}"
