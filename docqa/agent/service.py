"""
Remote agent-execution service: sessions (threads), messages, runs, tool outputs.

AgentService is the boundary the run controller and agent catalog talk to.
OpenAIAgentService implements it on the OpenAI Assistants API (threads and runs).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from docqa.core.config import OPENAI_API_KEY, OPENAI_LLM_MODEL
from docqa.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    FAILED = "failed"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {RunStatus.CANCELLED, RunStatus.FAILED, RunStatus.COMPLETED, RunStatus.INCOMPLETE, RunStatus.EXPIRED}
)


@dataclass(frozen=True)
class Session:
    """Opaque handle to a remote multi-turn conversation."""

    id: str


@dataclass(frozen=True)
class AgentHandle:
    id: str
    name: str


@dataclass(frozen=True)
class ToolCallRequest:
    call_id: str
    function_name: str
    raw_arguments: str


@dataclass(frozen=True)
class ToolOutput:
    call_id: str
    output: str


@dataclass
class RunState:
    id: str
    session_id: str
    status: RunStatus
    required_tool_calls: list[ToolCallRequest] = field(default_factory=list)
    last_error_code: str | None = None
    last_error_message: str | None = None
    incomplete_reason: str | None = None


@dataclass
class RunStep:
    id: str
    status: str
    type: str
    error_code: str | None = None
    error_message: str | None = None


@dataclass
class AgentMessage:
    id: str
    role: str
    texts: list[str]
    created_at: int = 0


class AgentService(ABC):
    """Network boundary for remote agents. Every method is a suspension point."""

    @abstractmethod
    async def list_agents(self) -> list[AgentHandle]: ...

    @abstractmethod
    async def create_agent(
        self, name: str, description: str, instructions: str, tools: list[dict[str, Any]]
    ) -> AgentHandle: ...

    @abstractmethod
    async def create_session(self) -> Session: ...

    @abstractmethod
    async def post_message(self, session: Session, text: str) -> str: ...

    @abstractmethod
    async def create_run(self, session: Session, agent: AgentHandle) -> RunState: ...

    @abstractmethod
    async def get_run(self, run: RunState) -> RunState: ...

    @abstractmethod
    async def submit_tool_outputs(self, run: RunState, outputs: list[ToolOutput]) -> RunState: ...

    @abstractmethod
    async def cancel_run(self, run: RunState) -> RunState: ...

    @abstractmethod
    async def list_run_steps(self, run: RunState) -> list[RunStep]: ...

    @abstractmethod
    async def list_messages(self, session: Session, since_id: str | None = None) -> list[AgentMessage]:
        """Messages created after since_id, oldest first."""


def _run_state(run: Any) -> RunState:
    required: list[ToolCallRequest] = []
    action = getattr(run, "required_action", None)
    submit = getattr(action, "submit_tool_outputs", None) if action else None
    for tc in getattr(submit, "tool_calls", None) or []:
        fn = getattr(tc, "function", None)
        if not fn:
            continue
        required.append(
            ToolCallRequest(
                call_id=tc.id,
                function_name=getattr(fn, "name", "") or "",
                raw_arguments=getattr(fn, "arguments", None) or "",
            )
        )
    last_error = getattr(run, "last_error", None)
    incomplete = getattr(run, "incomplete_details", None)
    return RunState(
        id=run.id,
        session_id=run.thread_id,
        status=RunStatus(run.status),
        required_tool_calls=required,
        last_error_code=getattr(last_error, "code", None) if last_error else None,
        last_error_message=getattr(last_error, "message", None) if last_error else None,
        incomplete_reason=getattr(incomplete, "reason", None) if incomplete else None,
    )


class OpenAIAgentService(AgentService):
    """AgentService backed by the OpenAI Assistants API (assistants, threads, runs)."""

    def __init__(self, client: Any = None, model: str | None = None) -> None:
        if client is None:
            if not OPENAI_API_KEY:
                raise ServiceUnavailableError("OPENAI_API_KEY must be set in .env to use the agent service")
            from openai import AsyncOpenAI

            client = AsyncOpenAI(api_key=OPENAI_API_KEY)
        self._client = client
        self._model = model or OPENAI_LLM_MODEL

    async def list_agents(self) -> list[AgentHandle]:
        agents: list[AgentHandle] = []
        async for a in self._client.beta.assistants.list(limit=100):
            agents.append(AgentHandle(id=a.id, name=a.name or ""))
        logger.info("[service:list_agents] OUT agents=%d", len(agents))
        return agents

    async def create_agent(
        self, name: str, description: str, instructions: str, tools: list[dict[str, Any]]
    ) -> AgentHandle:
        a = await self._client.beta.assistants.create(
            name=name,
            model=self._model,
            description=description,
            instructions=instructions,
            tools=tools,
        )
        logger.info("[service:create_agent] OUT name=%s id=%s tools=%d", name, a.id, len(tools))
        return AgentHandle(id=a.id, name=a.name or name)

    async def create_session(self) -> Session:
        thread = await self._client.beta.threads.create()
        logger.info("[service:create_session] OUT session_id=%s", thread.id)
        return Session(id=thread.id)

    async def post_message(self, session: Session, text: str) -> str:
        msg = await self._client.beta.threads.messages.create(thread_id=session.id, role="user", content=text)
        return msg.id

    async def create_run(self, session: Session, agent: AgentHandle) -> RunState:
        run = await self._client.beta.threads.runs.create(thread_id=session.id, assistant_id=agent.id)
        return _run_state(run)

    async def get_run(self, run: RunState) -> RunState:
        r = await self._client.beta.threads.runs.retrieve(run_id=run.id, thread_id=run.session_id)
        return _run_state(r)

    async def submit_tool_outputs(self, run: RunState, outputs: list[ToolOutput]) -> RunState:
        r = await self._client.beta.threads.runs.submit_tool_outputs(
            run_id=run.id,
            thread_id=run.session_id,
            tool_outputs=[{"tool_call_id": o.call_id, "output": o.output} for o in outputs],
        )
        return _run_state(r)

    async def cancel_run(self, run: RunState) -> RunState:
        r = await self._client.beta.threads.runs.cancel(run_id=run.id, thread_id=run.session_id)
        return _run_state(r)

    async def list_run_steps(self, run: RunState) -> list[RunStep]:
        steps: list[RunStep] = []
        async for s in self._client.beta.threads.runs.steps.list(run_id=run.id, thread_id=run.session_id):
            err = getattr(s, "last_error", None)
            steps.append(
                RunStep(
                    id=s.id,
                    status=s.status,
                    type=s.type,
                    error_code=getattr(err, "code", None) if err else None,
                    error_message=getattr(err, "message", None) if err else None,
                )
            )
        return steps

    async def list_messages(self, session: Session, since_id: str | None = None) -> list[AgentMessage]:
        params: dict[str, Any] = {"thread_id": session.id, "order": "asc"}
        if since_id:
            params["after"] = since_id
        messages: list[AgentMessage] = []
        async for m in self._client.beta.threads.messages.list(**params):
            texts = [
                part.text.value
                for part in (m.content or [])
                if getattr(part, "type", None) == "text" and part.text and part.text.value
            ]
            messages.append(AgentMessage(id=m.id, role=m.role, texts=texts, created_at=m.created_at or 0))
        return messages
