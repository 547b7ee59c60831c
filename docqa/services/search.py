"""
Search collaborator: semantic search over indexed document chunks.

Responsibility: Embed the query (HF Inference API), search Milvus with an optional
file-name filter, return SearchResult rows. The methods are marked as tools so the
agent catalog can register them on the specialist agents that need them.
"""

import asyncio
import logging
from typing import Annotated, Any

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from docqa.agent.tool_registry import tool
from docqa.core.cancellation import CancellationToken
from docqa.core.config import (
    COLLECTION_NAME,
    EMBED_API_TIMEOUT,
    HF_API_KEY,
    HF_EMBED_MODEL,
    MILVUS_TOKEN,
    MILVUS_URI,
    SEARCH_TOP_K,
)
from docqa.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

HF_EMBED_URL = (
    "https://router.huggingface.co/hf-inference/models/"
    f"{HF_EMBED_MODEL}/pipeline/feature-extraction"
)

FILE_NAME_FIELD = "file_name"
CONTENT_FIELD = "content"


class SearchResult(BaseModel):
    """One matching chunk. Serialized as {fileName, content, score}."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    file_name: str
    content: str
    score: float = 0.0


def _normalize(vec: list[float]) -> list[float]:
    norm = sum(x * x for x in vec) ** 0.5 or 1.0
    return [x / norm for x in vec]


def _filter_for(file_name: str) -> str:
    escaped = file_name.replace("\\", "\\\\").replace('"', '\\"')
    return f'{FILE_NAME_FIELD} == "{escaped}"'


class SearchService:
    """Milvus-backed search. client and http_client are injectable for tests."""

    def __init__(self, client: Any = None, http_client: httpx.AsyncClient | None = None, top_k: int = SEARCH_TOP_K) -> None:
        self._client = client
        self._http = http_client
        self.top_k = top_k

    def _milvus(self) -> Any:
        if self._client is None:
            if not MILVUS_URI or not MILVUS_TOKEN:
                raise ServiceUnavailableError("MILVUS_URI and MILVUS_TOKEN must be set in .env")
            from pymilvus import MilvusClient

            self._client = MilvusClient(uri=MILVUS_URI, token=MILVUS_TOKEN)
            logger.info("Milvus connection established")
        return self._client

    async def embed_query(self, text: str, cancellation: CancellationToken | None = None) -> list[float]:
        """Embed one query with all-MiniLM-L6-v2 and normalize it for cosine search."""
        if not HF_API_KEY:
            raise ServiceUnavailableError("HF_API_KEY must be set in .env to embed search queries")
        if cancellation:
            cancellation.raise_if_cancelled()
        headers = {"Authorization": f"Bearer {HF_API_KEY}", "Content-Type": "application/json"}
        payload = {"inputs": [text], "options": {"wait_for_model": True}}
        if self._http is not None:
            response = await self._http.post(HF_EMBED_URL, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=EMBED_API_TIMEOUT) as client:
                response = await client.post(HF_EMBED_URL, json=payload, headers=headers)
        if response.status_code != 200:
            raise ServiceUnavailableError(f"HF embeddings error {response.status_code}: {response.text[:200]}")
        data = response.json()
        vec = data[0] if isinstance(data, list) and data and isinstance(data[0], list) else data
        return _normalize([float(x) for x in vec])

    async def _search(self, query: str, expr: str, cancellation: CancellationToken | None) -> list[SearchResult]:
        if not query or not query.strip():
            return []
        vector = await self.embed_query(query.strip(), cancellation)
        if cancellation:
            cancellation.raise_if_cancelled()
        client = self._milvus()
        results = await asyncio.to_thread(
            client.search,
            collection_name=COLLECTION_NAME,
            data=[vector],
            limit=self.top_k,
            filter=expr,
            output_fields=[FILE_NAME_FIELD, CONTENT_FIELD],
        )
        hits = results[0] if results else []
        out = []
        for h in hits:
            entity = h.get("entity") or h
            out.append(
                SearchResult(
                    file_name=entity.get(FILE_NAME_FIELD, ""),
                    content=entity.get(CONTENT_FIELD, ""),
                    score=float(h.get("distance", h.get("score", 0.0))),
                )
            )
        return out

    @tool("Searches the index for information from the specified document and the provided query.")
    async def search_single_document(
        self,
        file_name: Annotated[str, "The name of the file to filter search."],
        query: Annotated[str, "The search query."],
        cancellation: CancellationToken | None = None,
    ) -> list[SearchResult]:
        logger.info("[search:single_document] IN  file_name=%r query=%r", file_name, query)
        results = await self._search(query, _filter_for(file_name), cancellation)
        logger.info("[search:single_document] OUT results=%d", len(results))
        return results

    @tool("Searches the index across all indexed documents for the provided query.")
    async def search_all_documents(
        self,
        query: Annotated[str, "The search query."],
        cancellation: CancellationToken | None = None,
    ) -> list[SearchResult]:
        logger.info("[search:all_documents] IN  query=%r", query)
        results = await self._search(query, "", cancellation)
        logger.info("[search:all_documents] OUT results=%d files=%s", len(results), sorted({r.file_name for r in results}))
        return results

    @tool("Lists the names of every document available in the index.")
    async def list_documents(self) -> list[str]:
        client = self._milvus()
        has_collection = await asyncio.to_thread(client.has_collection, COLLECTION_NAME)
        if not has_collection:
            return []
        rows = await asyncio.to_thread(
            client.query,
            collection_name=COLLECTION_NAME,
            filter="",
            limit=16_384,
            output_fields=[FILE_NAME_FIELD],
        )
        return sorted({(r.get(FILE_NAME_FIELD) or "").strip() for r in rows if (r.get(FILE_NAME_FIELD) or "").strip()})
