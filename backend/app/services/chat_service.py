"""
Chat service - the single entry point for handling one user message.

Persists the user turn, runs the tool-calling agent over the stored history,
then persists exactly one assistant turn: the answer with its tool calls and
results, or an error turn when the model could not be reached.
"""

import asyncio
import weakref
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging_config import get_logger
from app.services.ai.gemini_gateway import GeminiGateway, ProviderError
from app.services.conversation_store import ConversationStore
from app.services.tools.agent import ToolCallingAgent
from app.services.tools.executor import ToolExecutor
from app.services.tools.registry import ToolRegistry

GENERIC_FAILURE_MESSAGE = "Could not generate a response. Please try again."
TITLE_MAX_LENGTH = 50

# One writer per conversation inside this process
_conversation_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()


def _conversation_lock(conversation_id: int) -> asyncio.Lock:
    lock = _conversation_locks.get(conversation_id)
    if lock is None:
        lock = asyncio.Lock()
        _conversation_locks[conversation_id] = lock
    return lock


class ConversationNotFoundError(Exception):
    def __init__(self, conversation_id: int):
        super().__init__("Conversation not found")
        self.conversation_id = conversation_id


class TurnFailedError(Exception):
    """The turn could not be completed; an error turn was recorded for the conversation"""

    def __init__(self, conversation_id: int, cause: Optional[Exception] = None):
        super().__init__(GENERIC_FAILURE_MESSAGE)
        self.conversation_id = conversation_id
        self.cause = cause


@dataclass
class ChatTurnResult:
    conversation_id: int
    final_text: str
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    tool_results: List[Dict[str, Any]] = field(default_factory=list)
    usage: Optional[Dict[str, Any]] = None
    rounds: int = 0


class ChatService:
    def __init__(
        self,
        db: AsyncSession,
        gateway: GeminiGateway,
        registry: ToolRegistry,
        max_rounds: Optional[int] = None,
        max_history: Optional[int] = None
    ):
        self.db = db
        self.store = ConversationStore(db)
        self.gateway = gateway
        self.registry = registry
        self.max_rounds = settings.MAX_TOOL_ROUNDS if max_rounds is None else max_rounds
        self.max_history = settings.CHATBOT_MAX_HISTORY if max_history is None else max_history

    async def handle_user_turn(
        self,
        conversation_id: Optional[int],
        user_text: str,
        user_id: Optional[int] = None
    ) -> ChatTurnResult:
        """
        Process one user message end to end.

        Raises:
            ConversationNotFoundError: conversation_id does not exist
            TurnFailedError: the model call or the agent loop failed; an error turn was persisted
        """
        if conversation_id is None:
            conversation = await self.store.create_conversation(user_id=user_id)
        else:
            conversation = await self.store.get_conversation(conversation_id)
            if not conversation:
                raise ConversationNotFoundError(conversation_id)

        conversation_id = conversation.id
        logger = get_logger(__name__, conversation_id=conversation_id)

        agent = ToolCallingAgent(
            gateway=self.gateway,
            registry=self.registry,
            executor=ToolExecutor(self.registry),
            max_rounds=self.max_rounds
        )

        async with _conversation_lock(conversation_id):
            history = await self.store.get_history(conversation_id, max_messages=self.max_history)
            await self.store.append_turn(conversation_id, "user", user_text, user_id=user_id)

            try:
                outcome = await agent.run(user_text, history, conversation_id=conversation_id)
            except ProviderError as e:
                logger.error(f"Model call failed, recording failed turn: {e}")
                await self._record_failed_turn(conversation_id, e.error_type)
                raise TurnFailedError(conversation_id, e) from e
            except Exception as e:
                logger.exception(f"Turn failed unexpectedly, recording failed turn: {e}")
                await self._record_failed_turn(conversation_id, type(e).__name__)
                raise TurnFailedError(conversation_id, e) from e

            function_calls = [call.to_record() for call in outcome.tool_calls]
            function_results = [result.to_record() for result in outcome.tool_results]

            await self.store.append_turn(
                conversation_id,
                "assistant",
                outcome.final_text,
                function_calls=function_calls,
                function_results=function_results,
                metadata={
                    "usage": outcome.usage,
                    "rounds": outcome.rounds,
                    "max_rounds_reached": outcome.max_rounds_reached,
                    "model": self.gateway.model,
                }
            )

            # Conditional in SQL; a rename made during this turn wins
            title = user_text[:TITLE_MAX_LENGTH] + ("..." if len(user_text) > TITLE_MAX_LENGTH else "")
            await self.store.set_title_if_default(conversation_id, title)

        logger.info(
            f"Handled turn: {len(function_calls)} tool call(s), {outcome.rounds} model call(s)"
        )
        return ChatTurnResult(
            conversation_id=conversation_id,
            final_text=outcome.final_text,
            tool_calls=function_calls,
            tool_results=function_results,
            usage=outcome.usage,
            rounds=outcome.rounds
        )

    async def _record_failed_turn(self, conversation_id: int, error_type: str) -> None:
        await self.store.append_turn(
            conversation_id,
            "assistant",
            GENERIC_FAILURE_MESSAGE,
            metadata={
                "failed": True,
                "error_type": error_type,
                "model": self.gateway.model,
            }
        )
