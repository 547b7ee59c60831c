# Run from project root: uvicorn docqa.main:app --reload

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from docqa.api.routes import get_agent_router, router
from docqa.core.config import LOG_LEVEL, OPENAI_API_KEY

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))
logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Agents are bootstrapped at startup so a missing or ambiguous agent stops the process.
    if OPENAI_API_KEY:
        await get_agent_router()
    yield


app = FastAPI(title="Document Questions Backend", lifespan=lifespan)
app.include_router(router)
