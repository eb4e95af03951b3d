from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime


class MessageBase(BaseModel):
    role: str = Field(..., description="Role of the message sender: 'user' or 'assistant'")
    content: str = Field(..., description="Content of the message")


class MessageResponse(MessageBase):
    id: int
    conversation_id: int
    function_calls: Optional[List[Dict[str, Any]]] = None
    function_results: Optional[List[Dict[str, Any]]] = None
    message_metadata: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ConversationBase(BaseModel):
    title: Optional[str] = None


class ConversationCreate(ConversationBase):
    user_id: Optional[int] = None


class ConversationUpdate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)


class ConversationResponse(ConversationBase):
    id: int
    user_id: Optional[int] = None
    is_active: bool
    created_at: datetime
    updated_at: Optional[datetime] = None
    messages: List[MessageResponse] = []

    class Config:
        from_attributes = True


class ConversationListResponse(ConversationBase):
    id: int
    user_id: Optional[int] = None
    is_active: bool
    created_at: datetime
    updated_at: Optional[datetime] = None
    message_count: Optional[int] = 0
    last_message: Optional[str] = None

    class Config:
        from_attributes = True


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="User message to send to the assistant")
    conversation_id: Optional[int] = Field(None, description="ID of existing conversation, or None to start new")
    user_id: Optional[int] = Field(None, description="Optional team member sending the message")

    @field_validator("message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value


class ChatResponse(BaseModel):
    conversation_id: int
    response: str
    function_calls: List[Dict[str, Any]] = []
    function_results: List[Dict[str, Any]] = []
    usage: Optional[Dict[str, Any]] = None
    rounds: int = 0


class ToolDescriptorResponse(BaseModel):
    name: str
    description: str
    parameters: Dict[str, Any]


class ToolsResponse(BaseModel):
    tools: List[ToolDescriptorResponse]
    count: int
    services: Dict[str, bool] = Field(..., description="Which integrations are configured")


class UserStatsResponse(BaseModel):
    total_conversations: int
    total_messages: int
