"""
Chat LLM: OpenAI (primary) or Hugging Face (fallback).
When OPENAI_API_KEY is set, uses OpenAI chat completions; otherwise uses HF router.
Used by the sequential search → summarize pipeline, which runs outside the agent service.
"""

import logging
from typing import Any

import httpx

from docqa.core.config import (
    HF_API_KEY,
    HF_CHAT_URL,
    HF_LLM_MODEL,
    LLM_API_TIMEOUT,
    OPENAI_API_KEY,
    OPENAI_LLM_MODEL,
)
from docqa.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)


async def _call_openai(messages: list[dict[str, Any]], max_tokens: int) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=OPENAI_API_KEY)
    response = await client.chat.completions.create(
        model=OPENAI_LLM_MODEL,
        messages=messages,
        max_tokens=max_tokens,
    )
    msg = response.choices[0].message if response.choices else None
    out = ((msg.content if msg else None) or "").strip()
    logger.info("[llm:openai] OUT response_len=%d", len(out))
    return out


async def _call_hf(messages: list[dict[str, Any]], max_tokens: int) -> str:
    headers = {"Authorization": f"Bearer {HF_API_KEY}", "Content-Type": "application/json"}
    payload = {"model": HF_LLM_MODEL, "messages": messages, "max_tokens": max_tokens}
    try:
        async with httpx.AsyncClient(timeout=LLM_API_TIMEOUT) as client:
            response = await client.post(HF_CHAT_URL, json=payload, headers=headers)
    except httpx.HTTPError as e:
        logger.warning("[llm:hf] request failed: %s", e)
        return ""
    if response.status_code != 200:
        logger.warning("[llm:hf] HF LLM error %s: %s", response.status_code, response.text[:200])
        return ""
    choices = response.json().get("choices") or []
    if choices and isinstance(choices[0], dict):
        out = ((choices[0].get("message") or {}).get("content") or "").strip()
        logger.info("[llm:hf] OUT response_len=%d", len(out))
        return out
    return ""


async def chat_complete(messages: list[dict[str, Any]], max_tokens: int = 512) -> str:
    """
    Run one chat completion over messages. Uses OpenAI when OPENAI_API_KEY is set,
    falling back to Hugging Face when OpenAI returns nothing.
    """
    logger.info("[llm] IN  messages=%d max_tokens=%d", len(messages), max_tokens)
    if not OPENAI_API_KEY and not HF_API_KEY:
        raise ServiceUnavailableError("Set OPENAI_API_KEY or HF_API_KEY in .env to use the chat LLM")
    if OPENAI_API_KEY:
        out = await _call_openai(messages, max_tokens)
        if out:
            return out
        logger.info("[llm] OpenAI returned empty; falling back to Hugging Face")
    if not HF_API_KEY:
        return ""
    return await _call_hf(messages, max_tokens)
