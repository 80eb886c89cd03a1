"""
Pydantic schemas for the Agent Flow API.

Defines request/response models for the flow run and state endpoints.
"""
from typing import Any, Literal
from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """One message of the caller's conversation."""

    role: Literal["user", "assistant", "system", "developer"]
    content: str = ""


class FlowRunRequest(BaseModel):
    """Request model for the flow run endpoint."""

    flow_id: str = Field(..., alias="flowId", min_length=1, description="Flow to execute")
    conversation_id: str | None = Field(None, alias="id", description="Existing conversation id")
    variables: dict[str, Any] = Field(default_factory=dict, description="Initial flow variables")
    stream: bool = Field(False, description="Stream results as server-sent events")
    model: str | None = Field(None, description="Model name echoed in the response")
    messages: list[ChatMessage] = Field(default_factory=list)

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "flowId": "support-bot",
                    "stream": False,
                    "messages": [{"role": "user", "content": "I was charged twice"}],
                }
            ]
        },
    )


class ErrorDetail(BaseModel):
    message: str
    type: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """Error response model."""

    error: ErrorDetail


class FlowStateResponse(BaseModel):
    """Stored flow state of a conversation."""

    id: str
    flow_state: dict[str, Any] = Field(..., alias="flowState")
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class ConversationResponse(BaseModel):
    """Conversation record with its messages."""

    id: str
    flow_id: str = Field(..., alias="flowId")
    title: str | None = None
    created_at: str = Field(..., alias="createdAt")
    last_message_at: str | None = Field(None, alias="lastMessageAt")
    flow_state: dict[str, Any] | None = Field(None, alias="flowState")
    messages: list[dict[str, Any]] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"] = "healthy"
    service: str = "agent-flow"
    version: str = "1.0.0"
    timestamp: str
