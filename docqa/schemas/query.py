"""Schemas for the ask / summarize / conversation endpoints."""

from typing import Any

from pydantic import BaseModel, Field


class AskRequest(BaseModel):
    """Request body for POST /ask and /ask/all. Conversation state is kept server-side."""

    question: str = Field(..., min_length=1, description="User question for the agents.")


class SummarizeRequest(BaseModel):
    """Request body for POST /summarize. Empty document means the active document."""

    document: str = Field("", description="Document to summarize; defaults to the active document.")


class ActiveDocumentRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Name of the indexed document to ask questions about.")


class AnswerResponse(BaseModel):
    """Response for the non-streaming ask / summarize endpoints."""

    answer: str = Field(..., description="Concatenated answer text. Empty when the run failed.")
    session_id: str | None = Field(None, description="Session the answer was produced on.")


class ConversationResponse(BaseModel):
    active_document: str = Field("", description="Current active document.")
    sessions: dict[str, str] = Field(default_factory=dict, description="Live session id per agent role.")


class ToolDefinitionResponse(BaseModel):
    role: str
    name: str
    description: str
    parameters: dict[str, Any]
