"""
Gemini gateway - the single point of contact with the language model.

Builds the system prompt from the current tool descriptors, replays history
explicitly on every call (no hidden chat session), and turns responses into
ModelReply values. Automatic function calling is disabled; the agent loop
executes tools itself.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from google import genai
from google.genai import types as genai_types

from app.core.config import Settings
from app.services.tools.schema import (
    ToolDescriptor,
    ToolExecutionResult,
    ToolInvocationRequest,
)

logger = logging.getLogger(__name__)

PROMPT_HEADER = (
    "You are an AI assistant that helps manage engineering projects through various "
    "integrations. You have access to the following tools:"
)

NO_TOOLS_LINE = "Currently no tools are available. Provide helpful responses based on your knowledge."

BEHAVIOR_DIRECTIVES = """BEHAVIOR:
- Execute requested actions immediately by calling the appropriate tools. Never ask for permission or confirmation first.
- You may call several tools in one response when the actions are independent.
- When a tool fails, tell the user honestly what failed and why. Never claim an action succeeded if its tool reported a failure.
- Reuse links, ids and numbers from earlier tool results in follow-up answers instead of inventing them.
- When asked to split a project into tasks, read the project context first, then create the tasks right away and list what you created."""


class ProviderError(Exception):
    """The model call itself failed (network, auth, quota, timeout)"""

    def __init__(self, message: str, provider: str = "gemini", error_type: Optional[str] = None):
        super().__init__(message)
        self.provider = provider
        self.error_type = error_type


@dataclass
class ModelReply:
    """Parsed model response: text may be empty when only tools were requested"""
    text: str = ""
    tool_requests: List[ToolInvocationRequest] = field(default_factory=list)
    usage: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class GeminiConfig:
    api_key: str
    model: str = "gemini-2.5-pro"
    temperature: float = 0.7
    top_k: int = 40
    top_p: float = 0.95
    max_output_tokens: int = 8192
    request_timeout: float = 120

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["GeminiConfig"]:
        """None when no API key is configured; chat is unavailable then."""
        if not settings.GOOGLE_API_KEY:
            return None
        return cls(
            api_key=settings.GOOGLE_API_KEY,
            model=settings.GEMINI_MODEL,
            temperature=settings.GEMINI_TEMPERATURE,
            top_k=settings.GEMINI_TOP_K,
            top_p=settings.GEMINI_TOP_P,
            max_output_tokens=settings.GEMINI_MAX_OUTPUT_TOKENS,
            request_timeout=settings.LLM_REQUEST_TIMEOUT,
        )


def user_turn(text: str) -> Dict[str, Any]:
    return {"role": "user", "parts": [{"text": text}]}


def model_turn(reply: ModelReply) -> Dict[str, Any]:
    """History entry for a model reply; tool-only replies are recorded as text."""
    text = reply.text
    if not text and reply.tool_requests:
        text = "Requested tools: " + ", ".join(r.describe() for r in reply.tool_requests)
    return {"role": "model", "parts": [{"text": text}]}


def build_system_prompt(descriptors: Sequence[ToolDescriptor]) -> str:
    lines = [PROMPT_HEADER, ""]
    if descriptors:
        lines.extend(d.to_prompt_line() for d in descriptors)
        lines.append("")
        lines.append(BEHAVIOR_DIRECTIVES)
    else:
        lines.append(NO_TOOLS_LINE)
    return "\n".join(lines)


def render_results_summary(results: Sequence[ToolExecutionResult], original_request: str) -> str:
    """Synthetic turn that reports the latest tool outcomes back to the model."""
    rendered = "\n\n".join(r.to_summary_line() for r in results)
    return (
        "Here are the latest tool results:\n\n"
        f"{rendered}\n\n"
        f'The original request was: "{original_request}"\n\n'
        "Call more tools if needed to complete the request, or give a final answer to the user."
    )


class GeminiGateway:
    """
    Wraps google-genai's async client.

    Usage:
        gateway = GeminiGateway(GeminiConfig.from_settings(settings))
        reply = await gateway.converse("What's 2+2?", history=[], descriptors=[])
    """

    provider = "gemini"

    def __init__(self, config: GeminiConfig, client: Optional[Any] = None):
        self.config = config
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = genai.Client(api_key=self.config.api_key)
        return self._client

    @property
    def model(self) -> str:
        return self.config.model

    # Re-exported so callers holding only a gateway can build prompts and summaries
    build_system_prompt = staticmethod(build_system_prompt)
    render_results_summary = staticmethod(render_results_summary)

    async def converse(
        self,
        user_text: str,
        history: Sequence[Dict[str, Any]],
        descriptors: Sequence[ToolDescriptor],
    ) -> ModelReply:
        """Send a new user message on top of `history`."""
        return await self._send(user_text, history, descriptors)

    async def continue_conversation(
        self,
        results_summary: str,
        history: Sequence[Dict[str, Any]],
        descriptors: Sequence[ToolDescriptor],
    ) -> ModelReply:
        """Send a synthetic tool-results turn on top of `history`."""
        return await self._send(results_summary, history, descriptors)

    async def _send(
        self,
        message: str,
        history: Sequence[Dict[str, Any]],
        descriptors: Sequence[ToolDescriptor],
    ) -> ModelReply:
        try:
            contents = self._to_contents(list(history) + [user_turn(message)])
            config = self._build_config(descriptors)
            response = await asyncio.wait_for(
                self.client.aio.models.generate_content(
                    model=self.config.model,
                    contents=contents,
                    config=config,
                ),
                timeout=self.config.request_timeout,
            )
        except asyncio.TimeoutError:
            raise ProviderError(
                f"LLM API error ({self.provider}): Request timed out after {self.config.request_timeout}s",
                provider=self.provider,
                error_type="TimeoutError",
            )
        except Exception as e:
            error_type = type(e).__name__
            logger.error(f"Gemini request failed: [{error_type}] {e}")
            raise ProviderError(
                f"LLM API error ({self.provider}): [{error_type}] {e}",
                provider=self.provider,
                error_type=error_type,
            ) from e

        return self.parse_response(response)

    def _build_config(self, descriptors: Sequence[ToolDescriptor]) -> genai_types.GenerateContentConfig:
        config_kwargs: Dict[str, Any] = {
            "system_instruction": build_system_prompt(descriptors),
            "temperature": self.config.temperature,
            "top_k": self.config.top_k,
            "top_p": self.config.top_p,
            "max_output_tokens": self.config.max_output_tokens,
        }
        if descriptors:
            config_kwargs["tools"] = [
                genai_types.Tool(function_declarations=[
                    genai_types.FunctionDeclaration(**d.to_gemini_declaration())
                    for d in descriptors
                ])
            ]
            config_kwargs["automatic_function_calling"] = {"disable": True}
        return genai_types.GenerateContentConfig(**config_kwargs)

    @staticmethod
    def _to_contents(history: Sequence[Dict[str, Any]]) -> List[genai_types.Content]:
        contents = []
        for entry in history:
            role = "model" if entry.get("role") in ("model", "assistant") else "user"
            parts = [
                genai_types.Part(text=part.get("text", ""))
                for part in entry.get("parts", [])
                if part.get("text")
            ]
            if parts:
                contents.append(genai_types.Content(role=role, parts=parts))
        return contents

    @staticmethod
    def parse_response(response: Any) -> ModelReply:
        """
        Extract text, function calls and usage from a generate_content response.

        Anything that cannot be read is logged and treated as an empty reply so
        the loop can finish gracefully.
        """
        try:
            candidates = response.candidates
            if not candidates or candidates[0].content is None:
                logger.warning("Gemini returned no candidates; treating as empty reply")
                return ModelReply(usage=GeminiGateway._usage(response))

            texts: List[str] = []
            requests: List[ToolInvocationRequest] = []
            for part in candidates[0].content.parts or []:
                function_call = getattr(part, "function_call", None)
                if function_call is not None and function_call.name:
                    requests.append(ToolInvocationRequest(
                        name=function_call.name,
                        args=dict(function_call.args or {}),
                    ))
                elif getattr(part, "text", None):
                    texts.append(part.text)

            return ModelReply(
                text="".join(texts),
                tool_requests=requests,
                usage=GeminiGateway._usage(response),
            )
        except (AttributeError, TypeError, ValueError, IndexError) as e:
            logger.warning(f"Malformed Gemini response ({type(e).__name__}: {e}); treating as empty reply")
            return ModelReply()

    @staticmethod
    def _usage(response: Any) -> Optional[Dict[str, Any]]:
        usage_metadata = getattr(response, "usage_metadata", None)
        if usage_metadata is None:
            return None
        prompt_tokens = getattr(usage_metadata, "prompt_token_count", None)
        completion_tokens = getattr(usage_metadata, "candidates_token_count", None)
        total_tokens = getattr(usage_metadata, "total_token_count", None)
        if total_tokens is None and prompt_tokens is not None and completion_tokens is not None:
            total_tokens = prompt_tokens + completion_tokens
        return {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "tokens_used": total_tokens,
        }
