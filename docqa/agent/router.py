"""
Multi-agent router: one logical "ask" over several specialist agents.

Roles: single-document QA, cross-document QA, summarizer, and a router agent that
picks among them through tool calls. Two strategies for the router's tools:

- agent: each router tool drives a nested run of a specialist agent to completion
  and returns its whole answer as the tool output (not streamed to the caller).
- direct: the router's tools call the search collaborator directly.

Which specialist handles a request is decided by the router agent's instructions.
Sessions are per role and owned by ConversationState.
"""

import logging
from enum import Enum
from typing import Annotated, AsyncIterator

from docqa.agent.catalog import (
    CROSS_DOCUMENT_INSTRUCTIONS,
    DIRECT_ROUTER_INSTRUCTIONS,
    DOCUMENT_QA_INSTRUCTIONS,
    ROUTER_INSTRUCTIONS,
    SUMMARIZER_INSTRUCTIONS,
    AgentCatalog,
    AgentSpec,
)
from docqa.agent.conversation import AgentRole, ConversationState, StreamChunk, collect_text, track
from docqa.agent.local_tools import LocalTools
from docqa.agent.pipeline import SearchSummarizePipeline
from docqa.agent.run_controller import RunController
from docqa.agent.service import AgentHandle, AgentService, Session
from docqa.agent.tool_registry import ToolRegistry, tool
from docqa.core.config import (
    CROSS_DOCUMENT_AGENT_NAME,
    DIRECT_ROUTER_AGENT_NAME,
    DOCUMENT_QA_AGENT_NAME,
    ROUTER_AGENT_NAME,
    ROUTER_STRATEGY,
    SUMMARIZER_AGENT_NAME,
)
from docqa.services.search import SearchService

logger = logging.getLogger(__name__)


class RouterStrategy(str, Enum):
    AGENT = "agent"
    DIRECT = "direct"


def format_question(question: str, document: str | None) -> str:
    """User message posted to a document-aware agent."""
    return f"Document Name:\n{document or '(none)'}\n\nQuestion: {question}"


class SpecialistTools:
    """Router tools that delegate to specialist agents through nested runs."""

    def __init__(self, router: "MultiAgentRouter") -> None:
        self._router = router

    @tool("Answers a question about one specific document using the document question specialist.")
    async def ask_document_questions(
        self,
        question: Annotated[str, "The user's question."],
        file_name: Annotated[str, "The name of the document to answer from."],
    ) -> str:
        return await collect_text(self._router.stream_role(AgentRole.DOCUMENT_QA, format_question(question, file_name)))

    @tool("Answers a question using information from all indexed documents.")
    async def ask_all_documents(self, question: Annotated[str, "The user's question."]) -> str:
        return await collect_text(self._router.stream_role(AgentRole.CROSS_DOCUMENT, f"Question: {question}"))

    @tool("Summarizes one document.")
    async def summarize_document(self, file_name: Annotated[str, "The name of the document to summarize."]) -> str:
        return await collect_text(self._router.stream_role(AgentRole.SUMMARIZER, summarize_request(file_name)))


def summarize_request(document: str) -> str:
    return f"Document Name:\n{document}\n\nSummarize this document."


class MultiAgentRouter:
    def __init__(
        self,
        service: AgentService,
        search: SearchService,
        strategy: RouterStrategy | str = ROUTER_STRATEGY,
        controller: RunController | None = None,
        state: ConversationState | None = None,
        pipeline: SearchSummarizePipeline | None = None,
    ) -> None:
        self.service = service
        self.search = search
        self.strategy = RouterStrategy(strategy)
        self.controller = controller or RunController(service)
        self.state = state or ConversationState()
        self.pipeline = pipeline or SearchSummarizePipeline(search)
        self.catalog = AgentCatalog(service)
        self.specs = self._build_specs()
        self._agents: dict[AgentRole, AgentHandle] = {}

    def _build_specs(self) -> dict[AgentRole, AgentSpec]:
        local_tools = LocalTools()

        qa = ToolRegistry()
        qa.register_function(self.search.search_single_document)
        qa.register(local_tools)

        cross = ToolRegistry()
        cross.register_function(self.search.search_all_documents)
        cross.register_function(self.search.list_documents)
        cross.register(local_tools)

        summarizer = ToolRegistry()
        summarizer.register_function(self.search.search_single_document)

        router = ToolRegistry()
        if self.strategy == RouterStrategy.AGENT:
            router.register(SpecialistTools(self))
            router_spec = AgentSpec(ROUTER_AGENT_NAME, "Routes document questions to specialist agents", ROUTER_INSTRUCTIONS, router)
        else:
            router.register_function(self.search.search_single_document)
            router.register_function(self.search.search_all_documents)
            router_spec = AgentSpec(
                DIRECT_ROUTER_AGENT_NAME, "Answers document questions with direct search", DIRECT_ROUTER_INSTRUCTIONS, router
            )

        return {
            AgentRole.DOCUMENT_QA: AgentSpec(
                DOCUMENT_QA_AGENT_NAME, "Asks questions about the document", DOCUMENT_QA_INSTRUCTIONS, qa
            ),
            AgentRole.CROSS_DOCUMENT: AgentSpec(
                CROSS_DOCUMENT_AGENT_NAME, "Asks questions across all documents", CROSS_DOCUMENT_INSTRUCTIONS, cross
            ),
            AgentRole.SUMMARIZER: AgentSpec(
                SUMMARIZER_AGENT_NAME, "Summarizes a document", SUMMARIZER_INSTRUCTIONS, summarizer
            ),
            AgentRole.ROUTER: router_spec,
        }

    async def initialize(self) -> None:
        """Find or create every agent up front. AgentInitializationError is fatal."""
        for role in AgentRole:
            await self._agent(role)

    async def _agent(self, role: AgentRole) -> AgentHandle:
        handle = self._agents.get(role)
        if handle is None:
            handle = self._agents[role] = await self.catalog.ensure(self.specs[role])
        return handle

    async def _session(self, role: AgentRole) -> Session:
        session = self.state.session_for(role)
        if session is None:
            session = await self.service.create_session()
            self.state.remember(role, session)
            logger.info("[router:session] created role=%s session=%s", role.value, session.id)
        return session

    async def stream_role(self, role: AgentRole, message: str) -> AsyncIterator[StreamChunk]:
        """Run one turn on role's agent and session, streaming its answer."""
        agent = await self._agent(role)
        session = await self._session(role)
        chunks = self.controller.run_streaming(
            agent,
            message,
            registry=self.specs[role].registry,
            session=session,
            cursor=self.state.cursor_for(session),
        )
        async for chunk in track(chunks, self.state, role):
            yield chunk

    def ask(self, text: str) -> AsyncIterator[StreamChunk]:
        """Route a question through the router agent, with the active document as context."""
        logger.info("[router:ask] IN  strategy=%s document=%r question=%r", self.strategy.value, self.state.active_document, text)
        return self.stream_role(AgentRole.ROUTER, format_question(text, self.state.active_document))

    def ask_all_documents(self, text: str) -> AsyncIterator[StreamChunk]:
        logger.info("[router:ask_all_documents] IN  question=%r", text)
        return self.stream_role(AgentRole.CROSS_DOCUMENT, f"Question: {text}")

    def summarize(self, active_document: str | None = None) -> AsyncIterator[StreamChunk]:
        document = (active_document or self.state.active_document or "").strip()
        if not document:
            raise ValueError("No active document set. Set one before asking for a summary.")
        logger.info("[router:summarize] IN  document=%r", document)
        return self.stream_role(AgentRole.SUMMARIZER, summarize_request(document))

    def summarize_all_documents(self, text: str) -> AsyncIterator[StreamChunk]:
        """Sequential pipeline: cross-document search chained into summarization."""
        logger.info("[router:summarize_all_documents] IN  question=%r", text)
        return self.pipeline.run_streaming(text)

    def set_active_document(self, name: str) -> None:
        self.state.set_active_document(name)

    def reset_conversation(self) -> None:
        self.state.reset()

    def tool_registries(self) -> dict[AgentRole, ToolRegistry]:
        return {role: spec.registry for role, spec in self.specs.items()}
