"""
Agent catalog: instructions for each specialist role and get-or-create bootstrap by name.

Agents live on the remote service and are looked up by name. Exactly one match is
reused, several matches or a failed creation raise AgentInitializationError, which
is fatal: nothing else works without the agent.
"""

import logging
from dataclasses import dataclass

from docqa.agent.service import AgentHandle, AgentService
from docqa.agent.tool_registry import ToolRegistry
from docqa.core.errors import AgentInitializationError

logger = logging.getLogger(__name__)

DOCUMENT_QA_INSTRUCTIONS = """You are a document answering bot.
- You will need to use a tool to retrieve the content - only make one query per user ask, do not iterate on your search tool calling.
- You are then to answer the question based on the content provided.
- If you aren't provided a document name, let the user know that it is missing and that they need to set an active document first.
- If you can not answer after examining the document's content, respond that you can't find the answer.
- You are not to make up answers. Use the content provided to answer the question.
- Always respond in a professional tone.
- When answering questions, always provide citations in the format [DocumentName: Page X] where X is the page number from which the information was obtained.
- When it makes sense, provide your answer in a bulleted list for easier readability."""

CROSS_DOCUMENT_INSTRUCTIONS = """You answer questions using every document in the index.
- Use the search_all_documents tool to retrieve content; you may call list_documents to see which documents exist.
- Compare and combine information from different documents when the question asks for it.
- Always cite the document each fact came from in the format [DocumentName].
- If the content does not answer the question, say that you can't find the answer. Do not make up answers."""

SUMMARIZER_INSTRUCTIONS = """You summarize documents.
- Use the search_single_document tool with the document name and broad queries (overview, key points, conclusions) to retrieve its content.
- Produce a concise summary: a one-paragraph overview followed by a bulleted list of the key points.
- Only use the retrieved content. If nothing is retrieved, say the document could not be found."""

ROUTER_INSTRUCTIONS = """You route document questions to the right specialist tool and return its answer to the user.
Rules:
- If the user asks for a summary, an overview, or to summarize, call summarize_document with the active document name.
- If the user asks about all documents, across documents, or every document, or if there is no active document, call ask_all_documents.
- Otherwise, when an active document is set, call ask_document_questions with the question and the active document name.
Call exactly one tool per request and return its answer without adding information of your own."""

DIRECT_ROUTER_INSTRUCTIONS = """You answer document questions using the search tools directly.
Rules:
- If the user asks about all documents, across documents, or every document, or if there is no active document, call search_all_documents.
- Otherwise, when an active document is set, call search_single_document with the active document name and a focused query.
- If the user asks for a summary, search the active document with broad queries and summarize the results.
Answer only from the retrieved content and cite it in the format [DocumentName]. If nothing relevant is found, say so."""


@dataclass
class AgentSpec:
    name: str
    description: str
    instructions: str
    registry: ToolRegistry


class AgentCatalog:
    def __init__(self, service: AgentService) -> None:
        self.service = service
        self._agents: dict[str, AgentHandle] = {}

    async def ensure(self, spec: AgentSpec) -> AgentHandle:
        """Return the remote agent named spec.name, creating it when it does not exist."""
        if spec.name in self._agents:
            return self._agents[spec.name]
        try:
            existing = await self.service.list_agents()
        except Exception as e:
            raise AgentInitializationError(spec.name, f"listing agents failed: {e}") from e

        named = [a for a in existing if a.name == spec.name]
        if len(named) > 1:
            raise AgentInitializationError(spec.name, f"expected one agent with this name, found {len(named)}")
        if named:
            handle = named[0]
            logger.info("[catalog:ensure] reusing agent name=%s id=%s", spec.name, handle.id)
        else:
            try:
                handle = await self.service.create_agent(
                    name=spec.name,
                    description=spec.description,
                    instructions=spec.instructions,
                    tools=spec.registry.openai_tools(),
                )
            except Exception as e:
                logger.error("[catalog:ensure] failed to create agent name=%s: %s", spec.name, e)
                raise AgentInitializationError(spec.name, str(e)) from e
            logger.info("[catalog:ensure] created agent name=%s id=%s", spec.name, handle.id)
        self._agents[spec.name] = handle
        return handle
