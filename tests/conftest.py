"""
Shared test doubles: an in-memory agent service with scripted runs, and a fake search service.
"""

import itertools
from dataclasses import dataclass, field
from typing import Any

import pytest

from docqa.agent.service import (
    AgentHandle,
    AgentMessage,
    AgentService,
    RunState,
    RunStatus,
    RunStep,
    Session,
    ToolCallRequest,
    ToolOutput,
)
from docqa.services.search import SearchResult


@dataclass
class RunScript:
    """Statuses returned by successive get_run calls, and the reply posted on completion.

    partial is posted as assistant text when the run ends in any other terminal status.
    """

    steps: list[Any]
    reply: list[str] = field(default_factory=list)
    partial: list[str] = field(default_factory=list)
    error_code: str | None = None
    error_message: str | None = None


@dataclass
class _Run:
    state: RunState
    agent: AgentHandle
    script: RunScript
    position: int = 0


class FakeAgentService(AgentService):
    def __init__(self, agents: list[AgentHandle] | None = None) -> None:
        self.agents = list(agents or [])
        self.created_agents: list[dict[str, Any]] = []
        self.sessions: list[Session] = []
        self.posted: list[tuple[str, str]] = []
        self.messages: dict[str, list[AgentMessage]] = {}
        self.scripts: dict[str, list[RunScript]] = {}
        self.runs: dict[str, _Run] = {}
        self.submitted: list[tuple[str, list[ToolOutput]]] = []
        self.cancelled: list[str] = []
        self.calls: list[str] = []
        self.fail_create_agent = False
        self._ids = itertools.count(1)

    def _id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def script(self, agent_name: str, *scripts: RunScript) -> None:
        self.scripts.setdefault(agent_name, []).extend(scripts)

    async def list_agents(self) -> list[AgentHandle]:
        self.calls.append("list_agents")
        return list(self.agents)

    async def create_agent(self, name, description, instructions, tools) -> AgentHandle:
        self.calls.append("create_agent")
        if self.fail_create_agent:
            raise RuntimeError("model deployment not found")
        handle = AgentHandle(id=self._id("asst"), name=name)
        self.agents.append(handle)
        self.created_agents.append({"name": name, "instructions": instructions, "tools": tools})
        return handle

    async def create_session(self) -> Session:
        self.calls.append("create_session")
        session = Session(id=self._id("thread"))
        self.sessions.append(session)
        self.messages[session.id] = []
        return session

    async def post_message(self, session: Session, text: str) -> str:
        self.calls.append("post_message")
        self.posted.append((session.id, text))
        msg = AgentMessage(id=self._id("msg"), role="user", texts=[text])
        self.messages.setdefault(session.id, []).append(msg)
        return msg.id

    async def create_run(self, session: Session, agent: AgentHandle) -> RunState:
        self.calls.append("create_run")
        queue = self.scripts.get(agent.name) or []
        script = queue.pop(0) if queue else RunScript(steps=[RunStatus.COMPLETED], reply=[f"reply from {agent.name}"])
        state = RunState(id=self._id("run"), session_id=session.id, status=RunStatus.QUEUED)
        self.runs[state.id] = _Run(state=state, agent=agent, script=script)
        return state

    async def get_run(self, run: RunState) -> RunState:
        self.calls.append("get_run")
        tracked = self.runs[run.id]
        step = tracked.script.steps[min(tracked.position, len(tracked.script.steps) - 1)]
        tracked.position += 1
        if isinstance(step, tuple):
            status, tool_calls = step
        else:
            status, tool_calls = step, []
        state = RunState(
            id=run.id,
            session_id=run.session_id,
            status=status,
            required_tool_calls=list(tool_calls),
            last_error_code=tracked.script.error_code if status == RunStatus.FAILED else None,
            last_error_message=tracked.script.error_message if status == RunStatus.FAILED else None,
        )
        if status.is_terminal and not tracked.state.status.is_terminal:
            texts = tracked.script.reply if status == RunStatus.COMPLETED else tracked.script.partial
            for text in texts:
                self.messages[run.session_id].append(AgentMessage(id=self._id("msg"), role="assistant", texts=[text]))
        tracked.state = state
        return state

    async def submit_tool_outputs(self, run: RunState, outputs: list[ToolOutput]) -> RunState:
        self.calls.append("submit_tool_outputs")
        self.submitted.append((run.id, list(outputs)))
        return RunState(id=run.id, session_id=run.session_id, status=RunStatus.QUEUED)

    async def cancel_run(self, run: RunState) -> RunState:
        self.calls.append("cancel_run")
        self.cancelled.append(run.id)
        return RunState(id=run.id, session_id=run.session_id, status=RunStatus.CANCELLING)

    async def list_run_steps(self, run: RunState) -> list[RunStep]:
        self.calls.append("list_run_steps")
        return [RunStep(id="step_1", status="failed", type="tool_calls", error_code="server_error", error_message="boom")]

    async def list_messages(self, session: Session, since_id: str | None = None) -> list[AgentMessage]:
        self.calls.append("list_messages")
        messages = self.messages.get(session.id, [])
        if since_id is None:
            return list(messages)
        ids = [m.id for m in messages]
        start = ids.index(since_id) + 1 if since_id in ids else 0
        return list(messages[start:])


class FakeSearchService:
    """Stands in for SearchService; records calls and returns canned results."""

    def __init__(self, results: list[SearchResult] | None = None, documents: list[str] | None = None) -> None:
        self.results = results if results is not None else [
            SearchResult(file_name="a.pdf", content="Total due: 42 USD", score=0.91)
        ]
        self.documents = documents if documents is not None else ["a.pdf", "b.pdf"]
        self.calls: list[tuple] = []

    async def search_single_document(self, file_name: str, query: str) -> list[SearchResult]:
        """Searches one document."""
        self.calls.append(("single", file_name, query))
        return [r for r in self.results if r.file_name == file_name]

    async def search_all_documents(self, query: str) -> list[SearchResult]:
        """Searches all documents."""
        self.calls.append(("all", query))
        return list(self.results)

    async def list_documents(self) -> list[str]:
        """Lists documents."""
        self.calls.append(("list",))
        return list(self.documents)


def tool_call(call_id: str, name: str, arguments: str) -> ToolCallRequest:
    return ToolCallRequest(call_id=call_id, function_name=name, raw_arguments=arguments)


async def no_sleep(_: float) -> None:
    return None


@pytest.fixture
def fake_service() -> FakeAgentService:
    return FakeAgentService()


@pytest.fixture
def fake_search() -> FakeSearchService:
    return FakeSearchService()
