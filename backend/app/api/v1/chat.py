import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, get_model_gateway, get_tool_registry
from app.services.ai.gemini_gateway import GeminiGateway
from app.services.chat_service import (
    ChatService,
    ConversationNotFoundError,
    TurnFailedError,
    GENERIC_FAILURE_MESSAGE,
)
from app.services.conversation_store import ConversationStore
from app.services.tools.registry import ToolRegistry
from app.schemas.chatbot import (
    ChatRequest,
    ChatResponse,
    ConversationResponse,
    ConversationListResponse,
    ConversationCreate,
    ConversationUpdate,
    UserStatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/chat", response_model=ChatResponse, status_code=status.HTTP_200_OK)
async def chat(
    request: ChatRequest,
    db: AsyncSession = Depends(get_db),
    gateway: GeminiGateway = Depends(get_model_gateway),
    registry: ToolRegistry = Depends(get_tool_registry)
):
    """
    Send a message to the assistant and get its answer.

    The assistant may call Jira, Notion, GitHub, Slack and team tools
    before answering; the calls and their results are returned alongside.

    - **message**: The user's message
    - **conversation_id**: Optional ID of existing conversation (creates new if not provided)
    - **user_id**: Optional team member sending the message
    """
    service = ChatService(db, gateway, registry)
    try:
        result = await service.handle_user_turn(
            request.conversation_id,
            request.message,
            user_id=request.user_id
        )
    except ConversationNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    except TurnFailedError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=GENERIC_FAILURE_MESSAGE,
            headers={"X-Conversation-Id": str(e.conversation_id)}
        )
    except Exception as e:
        logger.error(f"Chat request failed: {type(e).__name__}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error processing chat request"
        )

    return ChatResponse(
        conversation_id=result.conversation_id,
        response=result.final_text,
        function_calls=result.tool_calls,
        function_results=result.tool_results,
        usage=result.usage,
        rounds=result.rounds
    )


@router.get("/conversations", response_model=List[ConversationListResponse])
async def list_conversations(
    user_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 50,
    db: AsyncSession = Depends(get_db)
):
    """
    List conversations, most recently updated first.

    - **user_id**: Only conversations owned by this team member
    - **skip**: Number of conversations to skip (pagination)
    - **limit**: Maximum number of conversations to return
    """
    store = ConversationStore(db)
    return await store.list_conversations(user_id=user_id, skip=skip, limit=limit)


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    conversation_id: int,
    db: AsyncSession = Depends(get_db)
):
    """Get a specific conversation with all its messages."""
    store = ConversationStore(db)
    conversation = await store.get_conversation(conversation_id)

    if not conversation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found"
        )

    return conversation


@router.post("/conversations", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    conversation_data: ConversationCreate,
    db: AsyncSession = Depends(get_db)
):
    """
    Create a new conversation.

    - **title**: Optional title for the conversation
    - **user_id**: Optional owner
    """
    store = ConversationStore(db)
    conversation = await store.create_conversation(
        user_id=conversation_data.user_id,
        title=conversation_data.title
    )

    # Refresh to get the conversation with messages relationship
    await db.refresh(conversation, ["messages"])
    return conversation


@router.patch("/conversations/{conversation_id}", response_model=ConversationResponse)
async def update_conversation(
    conversation_id: int,
    update: ConversationUpdate,
    db: AsyncSession = Depends(get_db)
):
    """Rename a conversation."""
    store = ConversationStore(db)
    conversation = await store.update_title(conversation_id, update.title)

    if not conversation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found"
        )

    await db.refresh(conversation, ["messages"])
    return conversation


@router.delete("/conversations/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: int,
    db: AsyncSession = Depends(get_db)
):
    """Delete a conversation and all its messages."""
    store = ConversationStore(db)
    deleted = await store.delete_conversation(conversation_id)

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found"
        )

    return None


@router.get("/users/{user_id}/stats", response_model=UserStatsResponse)
async def get_user_stats(
    user_id: int,
    db: AsyncSession = Depends(get_db)
):
    """Conversation and message counts for a team member."""
    store = ConversationStore(db)
    return await store.get_user_stats(user_id)
