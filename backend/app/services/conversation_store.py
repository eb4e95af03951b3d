"""
Conversation store - append-only persistence of chat turns.

Turns are never edited; a conversation only grows by `append_turn` or is
deleted as a whole. History is replayed to the model ordered by
(created_at, id) in Gemini's role/parts shape.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.chatbot import Conversation, Message, DEFAULT_CONVERSATION_TITLE
from app.schemas.chatbot import ConversationListResponse

logger = logging.getLogger(__name__)

TOOL_CONTEXT_HEADER = "Context: Tool results to reuse in follow-ups:"


def summarize_tool_results(function_results: Optional[List[Dict[str, Any]]]) -> List[str]:
    """
    Compact lines naming links created by earlier tool calls, so follow-up
    requests ("post that issue to Slack") can reuse them.
    """
    lines: List[str] = []
    for record in function_results or []:
        if not isinstance(record, dict) or not record.get("success"):
            continue
        name = str(record.get("name") or "function")
        result = record.get("result")
        data = result.get("data") if isinstance(result, dict) and result.get("data") else result
        if not isinstance(data, dict):
            continue

        url = data.get("html_url") or data.get("url")
        number = data.get("number") or data.get("key")
        if not url:
            continue

        if "github_issue" in name or "pull_request" in name:
            label = f"#{number}" if number else "GitHub"
            lines.append(f"Created GitHub item {label}: {url}")
        elif "notion" in name:
            lines.append(f"Created Notion task: {url}")
        else:
            lines.append(f"{name} result: {url}")
    return lines


class ConversationStore:
    """Narrow read/write contract over conversations and messages"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_conversation(
        self,
        user_id: Optional[int] = None,
        title: Optional[str] = None
    ) -> Conversation:
        """Create a new conversation"""
        conversation = Conversation(
            user_id=user_id,
            title=title or DEFAULT_CONVERSATION_TITLE
        )
        self.db.add(conversation)
        await self.db.commit()
        await self.db.refresh(conversation)
        logger.info(f"Created conversation {conversation.id}")
        return conversation

    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        """Get a conversation with its messages"""
        result = await self.db.execute(
            select(Conversation)
            .options(selectinload(Conversation.messages))
            .where(Conversation.id == conversation_id)
        )
        return result.scalar_one_or_none()

    async def list_conversations(
        self,
        user_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[ConversationListResponse]:
        """List conversations, most recently updated first"""
        message_count = (
            select(func.count(Message.id))
            .where(Message.conversation_id == Conversation.id)
            .correlate(Conversation)
            .scalar_subquery()
        )
        last_message = (
            select(Message.content)
            .where(Message.conversation_id == Conversation.id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
            .correlate(Conversation)
            .scalar_subquery()
        )

        query = select(
            Conversation,
            message_count.label("message_count"),
            last_message.label("last_message")
        )
        if user_id is not None:
            query = query.where(Conversation.user_id == user_id)
        query = query.order_by(Conversation.updated_at.desc(), Conversation.id.desc()).offset(skip).limit(limit)

        result = await self.db.execute(query)

        conversations = []
        for conv, msg_count, last_content in result.all():
            conversations.append(ConversationListResponse(
                id=conv.id,
                user_id=conv.user_id,
                title=conv.title,
                is_active=conv.is_active,
                created_at=conv.created_at,
                updated_at=conv.updated_at,
                message_count=msg_count or 0,
                last_message=last_content
            ))
        return conversations

    async def append_turn(
        self,
        conversation_id: int,
        role: str,
        content: str,
        function_calls: Optional[List[Dict[str, Any]]] = None,
        function_results: Optional[List[Dict[str, Any]]] = None,
        user_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Message:
        """
        Append one turn and bump the conversation's updated_at.

        Both writes share a single commit, so a turn is either fully stored
        or not stored at all.
        """
        if role not in ("user", "assistant"):
            raise ValueError(f"Invalid role: {role}")

        message = Message(
            conversation_id=conversation_id,
            user_id=user_id,
            role=role,
            content=content,
            function_calls=function_calls or None,
            function_results=function_results or None,
            message_metadata=metadata
        )
        self.db.add(message)
        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        await self.db.refresh(message)
        return message

    async def get_turns(self, conversation_id: int, limit: Optional[int] = None) -> List[Message]:
        """Turns in replay order; with `limit`, only the most recent ones"""
        query = select(Message).where(Message.conversation_id == conversation_id)
        if not limit:
            result = await self.db.execute(query.order_by(Message.created_at.asc(), Message.id.asc()))
            return list(result.scalars().all())

        # Newest first in SQL, then back to replay order
        result = await self.db.execute(
            query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)
        )
        return list(reversed(result.scalars().all()))

    async def set_title_if_default(self, conversation_id: int, title: str) -> bool:
        """Retitle only while the conversation still has the default title; False if it was already renamed"""
        result = await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id, Conversation.title == DEFAULT_CONVERSATION_TITLE)
            .values(title=title)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.commit()
        return result.rowcount == 1

    async def get_history(
        self,
        conversation_id: int,
        max_messages: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """History formatted for Gemini: [{role: user|model, parts: [{text}]}]"""
        history = []
        for message in await self.get_turns(conversation_id, limit=max_messages):
            parts = [{"text": message.content}]
            if message.role == "assistant":
                lines = summarize_tool_results(message.function_results)
                if lines:
                    parts.append({"text": "\n".join([TOOL_CONTEXT_HEADER] + [f"- {line}" for line in lines])})
            history.append({
                "role": "model" if message.role == "assistant" else message.role,
                "parts": parts
            })
        return history

    async def update_title(self, conversation_id: int, title: str) -> Optional[Conversation]:
        conversation = await self.db.get(Conversation, conversation_id)
        if conversation is None:
            return None
        conversation.title = title
        await self.db.commit()
        await self.db.refresh(conversation)
        return conversation

    async def delete_conversation(self, conversation_id: int) -> bool:
        """Delete a conversation and all of its turns"""
        conversation = await self.get_conversation(conversation_id)
        if not conversation:
            return False

        await self.db.delete(conversation)
        await self.db.commit()
        logger.info(f"Deleted conversation {conversation_id}")
        return True

    async def get_user_stats(self, user_id: int) -> Dict[str, int]:
        total_conversations = await self.db.scalar(
            select(func.count(Conversation.id)).where(Conversation.user_id == user_id)
        )
        total_messages = await self.db.scalar(
            select(func.count(Message.id)).where(Message.user_id == user_id)
        )
        return {
            "total_conversations": total_conversations or 0,
            "total_messages": total_messages or 0,
        }
