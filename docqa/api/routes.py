"""
API routes: the caller-facing operations of the multi-agent router over HTTP.

Ask and summarize come in two forms: a JSON answer (the stream drained server-side)
and a Server-Sent Events stream of chunks. Conversation state lives in the router.
"""

import json
import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from docqa.agent.conversation import StreamChunk
from docqa.agent.router import MultiAgentRouter
from docqa.agent.service import OpenAIAgentService
from docqa.core.errors import AgentInitializationError, ServiceUnavailableError
from docqa.schemas.query import (
    ActiveDocumentRequest,
    AnswerResponse,
    AskRequest,
    ConversationResponse,
    SummarizeRequest,
    ToolDefinitionResponse,
)
from docqa.services.search import SearchService

logger = logging.getLogger(__name__)
router = APIRouter()

_agent_router: MultiAgentRouter | None = None

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}


async def get_agent_router() -> MultiAgentRouter:
    """Build the process-wide router on first use and bootstrap its agents."""
    global _agent_router
    if _agent_router is None:
        try:
            candidate = MultiAgentRouter(OpenAIAgentService(), SearchService())
            await candidate.initialize()
        except ServiceUnavailableError as e:
            raise HTTPException(status_code=503, detail=e.message) from e
        except AgentInitializationError as e:
            logger.error("Agent bootstrap failed: %s", e)
            raise HTTPException(status_code=500, detail=str(e)) from e
        _agent_router = candidate
    return _agent_router


async def _drain(chunks: AsyncIterator[StreamChunk]) -> AnswerResponse:
    parts: list[str] = []
    session_id = None
    try:
        async for chunk in chunks:
            parts.append(chunk.text)
            session_id = chunk.session.id
    except ServiceUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message) from e
    except Exception as e:
        logger.exception("Agent failed")
        raise HTTPException(status_code=500, detail=str(e)) from e
    return AnswerResponse(answer="".join(parts), session_id=session_id)


async def _sse_generator(chunks: AsyncIterator[StreamChunk]):
    """Yield Server-Sent Events: one 'chunk' per text fragment, then 'done' (or 'error')."""
    try:
        async for chunk in chunks:
            yield f"event: chunk\ndata: {json.dumps({'text': chunk.text, 'session_id': chunk.session.id})}\n\n"
    except Exception as e:
        logger.exception("SSE stream failed")
        yield f"event: error\ndata: {json.dumps({'message': str(e)})}\n\n"
        return
    yield "event: done\ndata: {}\n\n"


def _stream(chunks: AsyncIterator[StreamChunk]) -> StreamingResponse:
    return StreamingResponse(_sse_generator(chunks), media_type="text/event-stream", headers=SSE_HEADERS)


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "Document questions backend running"}


@router.get("/health", tags=["system"])
def health():
    return {"ok": True}


# --- Documents & conversation ---

@router.get("/documents", tags=["documents"], summary="List documents in the search index")
async def get_documents(agent_router: MultiAgentRouter = Depends(get_agent_router)) -> dict:
    try:
        documents = await agent_router.search.list_documents()
    except ServiceUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message) from e
    return {"documents": documents, "active_document": agent_router.state.active_document}


@router.put("/documents/active", tags=["documents"], summary="Set the active document", response_model=ConversationResponse)
def put_active_document(
    body: ActiveDocumentRequest, agent_router: MultiAgentRouter = Depends(get_agent_router)
) -> ConversationResponse:
    agent_router.set_active_document(body.name)
    return _conversation(agent_router)


@router.get("/conversation", tags=["documents"], response_model=ConversationResponse)
def get_conversation(agent_router: MultiAgentRouter = Depends(get_agent_router)) -> ConversationResponse:
    return _conversation(agent_router)


@router.post("/conversation/reset", tags=["documents"], summary="Start a fresh conversation", response_model=ConversationResponse)
def reset_conversation(agent_router: MultiAgentRouter = Depends(get_agent_router)) -> ConversationResponse:
    agent_router.reset_conversation()
    return _conversation(agent_router)


def _conversation(agent_router: MultiAgentRouter) -> ConversationResponse:
    state = agent_router.state
    return ConversationResponse(
        active_document=state.active_document,
        sessions={role.value: session.id for role, session in state.sessions.items()},
    )


@router.get("/tools", tags=["documents"], summary="Tool definitions per agent role", response_model=list[ToolDefinitionResponse])
def get_tools(agent_router: MultiAgentRouter = Depends(get_agent_router)) -> list[ToolDefinitionResponse]:
    return [
        ToolDefinitionResponse(role=role.value, name=d.name, description=d.description, parameters=d.to_schema())
        for role, registry in agent_router.tool_registries().items()
        for d in registry.definitions()
    ]


# --- Ask ---

@router.post("/ask", tags=["ask"], summary="Ask via the router agent", response_model=AnswerResponse)
async def post_ask(body: AskRequest, agent_router: MultiAgentRouter = Depends(get_agent_router)) -> AnswerResponse:
    return await _drain(agent_router.ask(body.question))


@router.post("/ask/stream", tags=["ask"], summary="Ask via the router agent (SSE stream)")
def post_ask_stream(body: AskRequest, agent_router: MultiAgentRouter = Depends(get_agent_router)) -> StreamingResponse:
    return _stream(agent_router.ask(body.question))


@router.post("/ask/all", tags=["ask"], summary="Ask across all documents", response_model=AnswerResponse)
async def post_ask_all(body: AskRequest, agent_router: MultiAgentRouter = Depends(get_agent_router)) -> AnswerResponse:
    return await _drain(agent_router.ask_all_documents(body.question))


@router.post("/ask/all/stream", tags=["ask"], summary="Ask across all documents (SSE stream)")
def post_ask_all_stream(body: AskRequest, agent_router: MultiAgentRouter = Depends(get_agent_router)) -> StreamingResponse:
    return _stream(agent_router.ask_all_documents(body.question))


# --- Summarize ---

def _summary_chunks(body: SummarizeRequest, agent_router: MultiAgentRouter) -> AsyncIterator[StreamChunk]:
    try:
        return agent_router.summarize(body.document or None)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.post("/summarize", tags=["summarize"], summary="Summarize a document", response_model=AnswerResponse)
async def post_summarize(
    body: SummarizeRequest, agent_router: MultiAgentRouter = Depends(get_agent_router)
) -> AnswerResponse:
    return await _drain(_summary_chunks(body, agent_router))


@router.post("/summarize/stream", tags=["summarize"], summary="Summarize a document (SSE stream)")
def post_summarize_stream(
    body: SummarizeRequest, agent_router: MultiAgentRouter = Depends(get_agent_router)
) -> StreamingResponse:
    return _stream(_summary_chunks(body, agent_router))


@router.post(
    "/summarize/all",
    tags=["summarize"],
    summary="Search all documents, then summarize",
    description="Sequential pipeline: cross-document search chained into summarization.",
    response_model=AnswerResponse,
)
async def post_summarize_all(body: AskRequest, agent_router: MultiAgentRouter = Depends(get_agent_router)) -> AnswerResponse:
    return await _drain(agent_router.summarize_all_documents(body.question))


@router.post("/summarize/all/stream", tags=["summarize"], summary="Search all documents, then summarize (SSE stream)")
def post_summarize_all_stream(
    body: AskRequest, agent_router: MultiAgentRouter = Depends(get_agent_router)
) -> StreamingResponse:
    return _stream(agent_router.summarize_all_documents(body.question))
