"""
LangGraph pipeline: cross-document search → summarize, over one shared message list.

This is the sequential alternative to the agent runs: the first step searches every
document and drafts an answer, the second summarizes that draft. The stream ends on
the explicit "output" produced by the summarize step, not on any remote run finishing.
"""

import logging
import uuid
from typing import Any, AsyncIterator, Awaitable, Callable, TypedDict

from langgraph.graph import END, StateGraph

from docqa.agent.conversation import StreamChunk
from docqa.agent.llm import chat_complete
from docqa.agent.service import Session
from docqa.core.config import PIPELINE_CONTEXT_CHARS, PIPELINE_MAX_TOKENS
from docqa.services.search import SearchResult, SearchService

logger = logging.getLogger(__name__)

ChatFn = Callable[[list[dict[str, Any]], int], Awaitable[str]]

CROSS_DOCUMENT_SYSTEM = (
    "You answer questions using excerpts from several documents. Use only the excerpts, "
    "cite each fact as [DocumentName], and say so if the excerpts do not answer the question."
)
SUMMARIZER_SYSTEM = (
    "You summarize the previous answer for the user: a short overview paragraph followed by "
    "a bulleted list of key points, keeping every [DocumentName] citation."
)


class PipelineState(TypedDict):
    question: str
    messages: list
    results: list
    output: str


def _format_results(results: list[SearchResult], limit: int = PIPELINE_CONTEXT_CHARS) -> str:
    blocks = []
    used = 0
    for r in results:
        block = f"[{r.file_name}]\n{r.content.strip()}"
        if used + len(block) > limit:
            break
        blocks.append(block)
        used += len(block)
    return "\n\n---\n\n".join(blocks)


class SearchSummarizePipeline:
    def __init__(self, search: SearchService, chat: ChatFn = chat_complete) -> None:
        self.search = search
        self.chat = chat

    async def _search_node(self, state: PipelineState) -> dict:
        """Step 1: search all documents and draft a cross-document answer."""
        question = state["question"]
        results = await self.search.search_all_documents(question)
        logger.info("[pipeline:search] OUT results=%d", len(results))
        context = _format_results(results) or "(no matching content)"
        messages = state["messages"] + [
            {"role": "user", "content": f"Question: {question}\n\nExcerpts:\n{context}"},
        ]
        draft = await self.chat([{"role": "system", "content": CROSS_DOCUMENT_SYSTEM}] + messages, PIPELINE_MAX_TOKENS)
        logger.info("[pipeline:search] draft_len=%d", len(draft))
        return {"results": results, "messages": messages + [{"role": "assistant", "content": draft}]}

    async def _summarize_node(self, state: PipelineState) -> dict:
        """Step 2: summarize the conversation so far; produces the pipeline output."""
        messages = state["messages"]
        summary = await self.chat(
            [{"role": "system", "content": SUMMARIZER_SYSTEM}]
            + messages
            + [{"role": "user", "content": "Summarize the answer above."}],
            PIPELINE_MAX_TOKENS,
        )
        logger.info("[pipeline:summarize] OUT output_len=%d", len(summary))
        return {"output": summary, "messages": messages + [{"role": "assistant", "content": summary}]}

    def build_graph(self):
        """search_documents → summarize → END."""
        graph = StateGraph(PipelineState)
        graph.add_node("search_documents", self._search_node)
        graph.add_node("summarize", self._summarize_node)
        graph.set_entry_point("search_documents")
        graph.add_edge("search_documents", "summarize")
        graph.add_edge("summarize", END)
        return graph.compile()

    async def run_streaming(self, question: str) -> AsyncIterator[StreamChunk]:
        """Yield the summary as one chunk once the output event arrives."""
        session = Session(id=f"pipeline-{uuid.uuid4().hex}")
        logger.info("[pipeline:run] START question=%r session=%s", question, session.id)
        initial: PipelineState = {"question": question, "messages": [], "results": [], "output": ""}
        async for event in self.build_graph().astream(initial, stream_mode="updates"):
            for node_name, update in event.items():
                logger.info("[pipeline:run] event node=%s", node_name)
                output = (update or {}).get("output")
                if output:
                    yield StreamChunk(text=output, session=session)
                    logger.info("[pipeline:run] END session=%s", session.id)
                    return
        logger.warning("[pipeline:run] finished without output session=%s", session.id)
