"""
Unit tests for MultiAgentRouter and AgentCatalog: sessions per role, delegation and bootstrap.
"""

import asyncio
import json

import pytest
from conftest import FakeAgentService, FakeSearchService, RunScript, no_sleep, tool_call

from docqa.agent.catalog import AgentCatalog, AgentSpec
from docqa.agent.conversation import AgentRole
from docqa.agent.router import MultiAgentRouter, RouterStrategy, format_question, summarize_request
from docqa.agent.run_controller import RunController
from docqa.agent.service import AgentHandle, RunStatus
from docqa.agent.tool_registry import ToolRegistry
from docqa.core.errors import AgentInitializationError


def _router(service: FakeAgentService, search: FakeSearchService, strategy: str = "agent") -> MultiAgentRouter:
    controller = RunController(service, poll_interval=0, sleep=no_sleep)
    return MultiAgentRouter(service, search, strategy=strategy, controller=controller)


async def _texts(chunks) -> list[str]:
    return [c.text async for c in chunks]


class TestFormatting:
    def test_format_question_with_document(self) -> None:
        assert format_question("What is the total?", "a.pdf") == "Document Name:\na.pdf\n\nQuestion: What is the total?"

    def test_format_question_without_document(self) -> None:
        assert format_question("Hi", "") == "Document Name:\n(none)\n\nQuestion: Hi"

    def test_summarize_request(self) -> None:
        assert summarize_request("a.pdf").startswith("Document Name:\na.pdf\n\n")


class TestSessions:
    """Sessions are created once per role and dropped on document change or reset."""

    def test_two_asks_reuse_one_session(self, fake_service, fake_search) -> None:
        router = _router(fake_service, fake_search)
        router.set_active_document("a.pdf")
        fake_service.script("DocumentRouter", RunScript(steps=[RunStatus.COMPLETED], reply=["one"]))
        fake_service.script("DocumentRouter", RunScript(steps=[RunStatus.COMPLETED], reply=["two"]))

        async def scenario():
            return await _texts(router.ask("q1")), await _texts(router.ask("q2"))

        first, second = asyncio.run(scenario())
        assert first == ["one"]
        assert second == ["two"]
        assert len(fake_service.sessions) == 1
        session_id = fake_service.sessions[0].id
        assert fake_service.posted == [
            (session_id, format_question("q1", "a.pdf")),
            (session_id, format_question("q2", "a.pdf")),
        ]
        assert router.state.session_for(AgentRole.ROUTER).id == session_id

    def test_set_active_document_drops_document_scoped_sessions(self, fake_service, fake_search) -> None:
        router = _router(fake_service, fake_search)

        async def scenario():
            await _texts(router.ask("q"))
            await _texts(router.ask_all_documents("q"))
            await _texts(router.summarize("a.pdf"))

        asyncio.run(scenario())
        assert set(router.state.sessions) == {AgentRole.ROUTER, AgentRole.CROSS_DOCUMENT, AgentRole.SUMMARIZER}
        cross = router.state.session_for(AgentRole.CROSS_DOCUMENT)

        router.set_active_document("b.pdf")
        assert router.state.active_document == "b.pdf"
        assert set(router.state.sessions) == {AgentRole.CROSS_DOCUMENT, AgentRole.SUMMARIZER}
        assert router.state.session_for(AgentRole.CROSS_DOCUMENT) is cross

        asyncio.run(_texts(router.ask("again")))
        assert len(fake_service.sessions) == 4

    def test_reset_drops_every_session(self, fake_service, fake_search) -> None:
        router = _router(fake_service, fake_search)
        router.set_active_document("a.pdf")
        asyncio.run(_texts(router.ask_all_documents("q")))
        router.reset_conversation()
        assert router.state.sessions == {}
        assert router.state.cursors == {}
        assert router.state.active_document == "a.pdf"


class TestAgentStrategy:
    """The router agent's tools run nested specialist runs and return their whole answer."""

    def test_nested_run_collapses_into_tool_output(self, fake_service, fake_search) -> None:
        router = _router(fake_service, fake_search)
        router.set_active_document("a.pdf")
        fake_service.script(
            "DocumentRouter",
            RunScript(
                steps=[
                    (RunStatus.REQUIRES_ACTION, [tool_call("c1", "ask_document_questions", '{"question":"total?","file_name":"a.pdf"}')]),
                    RunStatus.COMPLETED,
                ],
                reply=["The total is 42 USD."],
            ),
        )
        fake_service.script("AskQuestions", RunScript(steps=[RunStatus.COMPLETED], reply=["Total: ", "42 USD"]))

        texts = asyncio.run(_texts(router.ask("What is the total?")))

        assert texts == ["The total is 42 USD."]
        (run_id, outputs), = fake_service.submitted
        assert [(o.call_id, o.output) for o in outputs] == [("c1", "Total: 42 USD")]
        assert (router.state.session_for(AgentRole.DOCUMENT_QA).id, format_question("total?", "a.pdf")) in fake_service.posted

    def test_router_tools_are_the_specialists(self, fake_service, fake_search) -> None:
        router = _router(fake_service, fake_search)
        assert sorted(router.tool_registries()[AgentRole.ROUTER].names()) == [
            "ask_all_documents",
            "ask_document_questions",
            "summarize_document",
        ]

    def test_summarize_tool_uses_summarizer_agent(self, fake_service, fake_search) -> None:
        router = _router(fake_service, fake_search)
        fake_service.script(
            "DocumentRouter",
            RunScript(
                steps=[(RunStatus.REQUIRES_ACTION, [tool_call("c1", "summarize_document", '{"file_name":"a.pdf"}')]), RunStatus.COMPLETED],
                reply=["summary relayed"],
            ),
        )
        asyncio.run(_texts(router.ask("summarize it")))
        outputs = fake_service.submitted[0][1]
        assert outputs[0].output == "reply from SummarizeDocument"


class TestDirectStrategy:
    def test_router_tools_call_search_directly(self, fake_service, fake_search) -> None:
        router = _router(fake_service, fake_search, strategy="direct")
        assert router.strategy is RouterStrategy.DIRECT
        fake_service.script(
            "DocumentRouterDirect",
            RunScript(
                steps=[
                    (RunStatus.REQUIRES_ACTION, [tool_call("c1", "search_single_document", '{"file_name":"a.pdf","query":"total"}')]),
                    RunStatus.COMPLETED,
                ],
                reply=["42 USD [a.pdf]"],
            ),
        )

        texts = asyncio.run(_texts(router.ask("What is the total?")))

        assert texts == ["42 USD [a.pdf]"]
        assert fake_search.calls == [("single", "a.pdf", "total")]
        output = json.loads(fake_service.submitted[0][1][0].output)
        assert output == [{"fileName": "a.pdf", "content": "Total due: 42 USD", "score": 0.91}]
        assert "AskQuestions" not in [h.name for h in fake_service.agents]

    def test_direct_router_registry(self, fake_service, fake_search) -> None:
        router = _router(fake_service, fake_search, strategy="direct")
        assert sorted(router.tool_registries()[AgentRole.ROUTER].names()) == ["search_all_documents", "search_single_document"]


class TestCallerOperations:
    def test_ask_all_documents_posts_plain_question(self, fake_service, fake_search) -> None:
        router = _router(fake_service, fake_search)
        texts = asyncio.run(_texts(router.ask_all_documents("Compare totals")))
        assert texts == ["reply from AskAllDocuments"]
        assert fake_service.posted[-1][1] == "Question: Compare totals"

    def test_summarize_defaults_to_active_document(self, fake_service, fake_search) -> None:
        router = _router(fake_service, fake_search)
        router.set_active_document("a.pdf")
        texts = asyncio.run(_texts(router.summarize()))
        assert texts == ["reply from SummarizeDocument"]
        assert fake_service.posted[-1][1] == summarize_request("a.pdf")

    def test_summarize_without_document_raises(self, fake_service, fake_search) -> None:
        router = _router(fake_service, fake_search)
        with pytest.raises(ValueError):
            router.summarize()


class TestBootstrap:
    """initialize() finds or creates each agent by name."""

    def test_creates_missing_agents_with_tool_schemas(self, fake_service, fake_search) -> None:
        router = _router(fake_service, fake_search)
        asyncio.run(router.initialize())
        created = {a["name"]: a for a in fake_service.created_agents}
        assert set(created) == {"AskQuestions", "AskAllDocuments", "SummarizeDocument", "DocumentRouter"}
        qa_tools = [t["function"]["name"] for t in created["AskQuestions"]["tools"]]
        assert "search_single_document" in qa_tools
        assert "calculator" in qa_tools

    def test_reuses_single_existing_agent(self, fake_search) -> None:
        service = FakeAgentService(agents=[AgentHandle(id="asst_existing", name="AskQuestions")])
        router = _router(service, fake_search)
        asyncio.run(router.initialize())
        assert "AskQuestions" not in [a["name"] for a in service.created_agents]

    def test_duplicate_names_are_fatal(self, fake_search) -> None:
        service = FakeAgentService(
            agents=[AgentHandle(id="asst_1", name="AskQuestions"), AgentHandle(id="asst_2", name="AskQuestions")]
        )
        router = _router(service, fake_search)
        with pytest.raises(AgentInitializationError) as exc:
            asyncio.run(router.initialize())
        assert exc.value.agent_name == "AskQuestions"

    def test_create_failure_is_fatal(self, fake_service, fake_search) -> None:
        fake_service.fail_create_agent = True
        with pytest.raises(AgentInitializationError):
            asyncio.run(_router(fake_service, fake_search).initialize())

    def test_catalog_caches_by_name(self, fake_service) -> None:
        catalog = AgentCatalog(fake_service)
        spec = AgentSpec("Solo", "d", "i", ToolRegistry())

        async def twice():
            return await catalog.ensure(spec), await catalog.ensure(spec)

        first, second = asyncio.run(twice())
        assert first == second
        assert fake_service.calls.count("create_agent") == 1
