"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

# OpenAI (agent execution service: assistants, threads, runs)
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_LLM_MODEL: str = (
    os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
)

# Hugging Face (embeddings for search, fallback chat for the pipeline)
HF_API_KEY: str = os.getenv("HF_API_KEY", "").strip()
HF_EMBED_MODEL: str = "sentence-transformers/all-MiniLM-L6-v2"
HF_LLM_MODEL: str = (
    os.getenv("HF_LLM_MODEL", "meta-llama/Llama-3.2-3B-Instruct").strip()
    or "meta-llama/Llama-3.2-3B-Instruct"
)
HF_CHAT_URL: str = "https://router.huggingface.co/v1/chat/completions"

# Milvus Cloud (search index)
MILVUS_URI: str = os.getenv("MILVUS_URI", "").strip()
MILVUS_TOKEN: str = os.getenv("MILVUS_TOKEN", "").strip()
COLLECTION_NAME: str = os.getenv("COLLECTION_NAME", "general").strip() or "general"
SEARCH_TOP_K: int = 10

# API timeouts (seconds)
EMBED_API_TIMEOUT: float = 30.0
LLM_API_TIMEOUT: float = 60.0

# Run polling: base interval, capped backoff and overall deadline (seconds)
RUN_POLL_INTERVAL: float = _float_env("RUN_POLL_INTERVAL", 1.0)
RUN_POLL_BACKOFF: float = _float_env("RUN_POLL_BACKOFF", 1.5)
RUN_MAX_POLL_INTERVAL: float = _float_env("RUN_MAX_POLL_INTERVAL", 5.0)
RUN_TIMEOUT: float = _float_env("RUN_TIMEOUT", 300.0)

# Router: "agent" delegates to specialist agents, "direct" calls search directly
ROUTER_STRATEGY: str = os.getenv("ROUTER_STRATEGY", "agent").strip().lower() or "agent"

# Remote agent names (looked up by name, created when missing)
DOCUMENT_QA_AGENT_NAME: str = "AskQuestions"
CROSS_DOCUMENT_AGENT_NAME: str = "AskAllDocuments"
SUMMARIZER_AGENT_NAME: str = "SummarizeDocument"
ROUTER_AGENT_NAME: str = "DocumentRouter"
DIRECT_ROUTER_AGENT_NAME: str = "DocumentRouterDirect"

# Sequential pipeline
PIPELINE_MAX_TOKENS: int = 1024
PIPELINE_CONTEXT_CHARS: int = 6000
