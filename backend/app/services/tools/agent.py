"""
Tool Calling Agent - bounded orchestration loop for Gemini function calling

One call to `run` handles one user turn:
1. Send the user text plus prior history to the model with the tool declarations
2. Execute any requested tools as a batch
3. Feed a summary of the results back to the model
4. Repeat until the model answers without requesting tools, or the round cap is hit

History is threaded as an immutable value: every round builds a new list
instead of mutating a chat session.
"""

from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field
from enum import Enum

from app.core.config import settings
from app.core.logging_config import get_logger
from app.services.ai.gemini_gateway import ModelReply, model_turn, user_turn
from app.services.tools.executor import ToolExecutor
from app.services.tools.registry import ToolRegistry
from app.services.tools.schema import ToolInvocationRequest, ToolExecutionResult

FALLBACK_TEXT = "I've completed the requested actions"


class AgentState(str, Enum):
    """States the agent moves through while handling one user turn"""
    START = "start"
    AWAITING_MODEL = "awaiting_model"
    TOOLS_REQUESTED = "tools_requested"
    EXECUTING = "executing"
    DONE = "done"


@dataclass
class LoopState:
    """Ephemeral state for a single user turn; never persisted directly"""
    round_index: int = 0
    accumulated_tool_calls: List[ToolInvocationRequest] = field(default_factory=list)
    accumulated_tool_results: List[ToolExecutionResult] = field(default_factory=list)
    last_assistant_text: str = ""
    state: AgentState = AgentState.START

    def transition(self, new_state: AgentState) -> None:
        self.state = new_state

    def remember_text(self, text: str) -> None:
        if text and text.strip():
            self.last_assistant_text = text


@dataclass
class AgentOutcome:
    """Final projection of a loop, handed to the caller for persistence"""
    final_text: str
    tool_calls: List[ToolInvocationRequest] = field(default_factory=list)
    tool_results: List[ToolExecutionResult] = field(default_factory=list)
    usage: Optional[Dict[str, Any]] = None
    rounds: int = 0
    max_rounds_reached: bool = False


class ToolCallingAgent:
    """
    Drives the model and the tool executor until a final answer is produced.

    Usage:
        agent = ToolCallingAgent(gateway, registry, executor)
        outcome = await agent.run("create an issue titled X", history)
        print(outcome.final_text)

    Model failures (ProviderError) are not retried here; they propagate to
    the caller, which records the turn as failed.
    """

    def __init__(
        self,
        gateway,
        registry: ToolRegistry,
        executor: Optional[ToolExecutor] = None,
        max_rounds: Optional[int] = None
    ):
        self.gateway = gateway
        self.registry = registry
        self.executor = executor or ToolExecutor(registry)
        self.max_rounds = settings.MAX_TOOL_ROUNDS if max_rounds is None else max_rounds
        if self.max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")

    async def run(
        self,
        user_text: str,
        history: Optional[List[Dict[str, Any]]] = None,
        conversation_id: Optional[int] = None
    ) -> AgentOutcome:
        """
        Run the loop for one user message.

        Args:
            user_text: The user's message
            history: Prior turns in Gemini role/parts shape (not modified)
            conversation_id: Only used for log context

        Returns:
            AgentOutcome with final text and every tool call/result in order
        """
        logger = get_logger(__name__, conversation_id=conversation_id)
        descriptors = self.registry.list_descriptors()
        loop = LoopState()
        history = list(history or [])
        model_calls = 0

        loop.transition(AgentState.AWAITING_MODEL)
        reply: ModelReply = await self.gateway.converse(user_text, history, descriptors)
        model_calls += 1
        history = history + [user_turn(user_text), model_turn(reply)]
        usage = reply.usage

        while True:
            loop.remember_text(reply.text)

            if not reply.tool_requests:
                loop.transition(AgentState.DONE)
                final_text = reply.text if reply.text and reply.text.strip() else (
                    loop.last_assistant_text or FALLBACK_TEXT
                )
                logger.info(f"Agent finished after {model_calls} model call(s), {loop.round_index} tool round(s)")
                return self._outcome(loop, final_text, usage, model_calls, max_rounds_reached=False)

            loop.transition(AgentState.TOOLS_REQUESTED)
            requests = list(reply.tool_requests)
            loop.accumulated_tool_calls.extend(requests)

            loop.transition(AgentState.EXECUTING)
            results = await self.executor.execute_batch(requests)
            loop.accumulated_tool_results.extend(results)
            loop.round_index += 1

            failed = sum(1 for r in results if not r.success)
            logger.info(
                f"Tool round {loop.round_index}/{self.max_rounds}: "
                f"{', '.join(r.name for r in requests)} ({failed} failed)"
            )

            if loop.round_index >= self.max_rounds:
                logger.warning(f"Agent reached max tool rounds ({self.max_rounds}); stopping")
                loop.transition(AgentState.DONE)
                final_text = loop.last_assistant_text or FALLBACK_TEXT
                return self._outcome(loop, final_text, usage, model_calls, max_rounds_reached=True)

            loop.transition(AgentState.AWAITING_MODEL)
            summary = self.gateway.render_results_summary(results, user_text)
            reply = await self.gateway.continue_conversation(summary, history, descriptors)
            model_calls += 1
            history = history + [user_turn(summary), model_turn(reply)]
            if reply.usage is not None:
                usage = reply.usage

    @staticmethod
    def _outcome(
        loop: LoopState,
        final_text: str,
        usage: Optional[Dict[str, Any]],
        model_calls: int,
        max_rounds_reached: bool
    ) -> AgentOutcome:
        return AgentOutcome(
            final_text=final_text,
            tool_calls=list(loop.accumulated_tool_calls),
            tool_results=list(loop.accumulated_tool_results),
            usage=usage,
            rounds=model_calls,
            max_rounds_reached=max_rounds_reached
        )
