"""
Run controller: drive one conversational turn against a remote agent to completion.

Protocol: ensure a session, post the user message, start a run, then poll. When the
run requires action, every requested tool call is executed through the tool registry
and the whole batch of outputs is submitted in one call; this may repeat any number
of times. On completion the assistant messages created since the session cursor are
emitted oldest first as StreamChunks. Failed, cancelled, expired, incomplete and
timed-out runs are logged and produce no chunks; nothing is raised to the caller, and
the cursor moves past any messages they left. If the caller cancels the turn, the
remote run is cancelled and tools still executing see their CancellationToken set.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable

from docqa.agent.conversation import MessageCursor, StreamChunk
from docqa.agent.service import AgentHandle, AgentService, RunState, RunStatus, Session, ToolOutput
from docqa.agent.tool_registry import ToolRegistry
from docqa.core.cancellation import CancellationToken
from docqa.core.config import RUN_MAX_POLL_INTERVAL, RUN_POLL_BACKOFF, RUN_POLL_INTERVAL, RUN_TIMEOUT
from docqa.core.errors import RunTimeoutError

logger = logging.getLogger(__name__)


class RunController:
    def __init__(
        self,
        service: AgentService,
        poll_interval: float = RUN_POLL_INTERVAL,
        backoff: float = RUN_POLL_BACKOFF,
        max_poll_interval: float = RUN_MAX_POLL_INTERVAL,
        timeout: float | None = RUN_TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.service = service
        self.poll_interval = poll_interval
        self.backoff = max(backoff, 1.0)
        self.max_poll_interval = max(max_poll_interval, poll_interval)
        self.timeout = timeout
        self._sleep = sleep

    async def run_streaming(
        self,
        agent: AgentHandle,
        message: str,
        registry: ToolRegistry | None = None,
        session: Session | None = None,
        cursor: MessageCursor | None = None,
        cancellation: CancellationToken | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Run agent on session (created if None) and yield the new assistant text."""
        if session is None:
            session = await self.service.create_session()
        cursor = cursor if cursor is not None else MessageCursor()
        logger.info("[run_controller:run] IN  agent=%s session=%s message_len=%d", agent.name, session.id, len(message))
        logger.debug("[run_controller:run] message=%r", message)

        await self.service.post_message(session, message)
        run = await self.service.create_run(session, agent)
        logger.info("[run_controller:run] run_id=%s status=%s", run.id, run.status.value)

        token = cancellation if cancellation is not None else CancellationToken()
        try:
            run = await self._poll(run, registry or ToolRegistry(), token)
        except RunTimeoutError as e:
            logger.error("[run_controller:run] %s; cancelling", e)
            await self._cancel(run)
            await self._skip_messages(session, cursor)
            return
        except asyncio.CancelledError:
            # The session keeps no active run; tools still running see the token set.
            logger.warning("[run_controller:run] run_id=%s cancelled by caller; cancelling remote run", run.id)
            token.cancel()
            await asyncio.shield(self._cancel(run))
            raise

        if run.status != RunStatus.COMPLETED:
            await self._log_failure(run)
            await self._skip_messages(session, cursor)
            return

        messages = await self.service.list_messages(session, since_id=cursor.last_id)
        emitted = 0
        for msg in messages:
            if not cursor.accept(msg.id):
                continue
            if msg.role != "assistant":
                continue
            for text in msg.texts:
                if text:
                    emitted += 1
                    yield StreamChunk(text=text, session=session)
        logger.info("[run_controller:run] OUT run_id=%s messages=%d chunks=%d", run.id, len(messages), emitted)

    async def _poll(self, run: RunState, registry: ToolRegistry, cancellation: CancellationToken) -> RunState:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout if self.timeout else None
        interval = self.poll_interval
        while True:
            await self._sleep(interval)
            cancellation.raise_if_cancelled()
            run = await self.service.get_run(run)
            logger.debug("[run_controller:poll] run_id=%s status=%s", run.id, run.status.value)

            if run.status == RunStatus.REQUIRES_ACTION and run.required_tool_calls:
                outputs = await self._execute_tool_calls(run, registry, cancellation)
                run = await self.service.submit_tool_outputs(run, outputs)
                logger.info("[run_controller:poll] submitted outputs=%d status=%s", len(outputs), run.status.value)
                interval = self.poll_interval
            else:
                interval = min(interval * self.backoff, self.max_poll_interval)

            if run.status.is_terminal:
                return run
            if deadline is not None and loop.time() >= deadline:
                raise RunTimeoutError(run.id, self.timeout)

    @staticmethod
    async def _execute_tool_calls(
        run: RunState, registry: ToolRegistry, cancellation: CancellationToken
    ) -> list[ToolOutput]:
        outputs: list[ToolOutput] = []
        for call in run.required_tool_calls:
            logger.info("[run_controller:tool_call] name=%s arguments=%r", call.function_name, call.raw_arguments)
            output = await registry.execute(call.function_name, call.raw_arguments, cancellation)
            outputs.append(ToolOutput(call_id=call.call_id, output=output))
        return outputs

    async def _cancel(self, run: RunState) -> None:
        try:
            await self.service.cancel_run(run)
        except Exception as e:
            logger.warning("[run_controller:cancel] run_id=%s cancel failed: %s", run.id, e)

    async def _log_failure(self, run: RunState) -> None:
        logger.error(
            "[run_controller:run] run_id=%s ended status=%s code=%s message=%s incomplete_reason=%s",
            run.id,
            run.status.value,
            run.last_error_code,
            run.last_error_message,
            run.incomplete_reason,
        )
        try:
            steps = await self.service.list_run_steps(run)
        except Exception as e:
            logger.warning("[run_controller:run] could not list steps for run_id=%s: %s", run.id, e)
            return
        for step in steps:
            logger.info("[run_controller:run] step=%s status=%s type=%s", step.id, step.status, step.type)
            if step.error_message:
                logger.error("[run_controller:run]   step error: %s (code: %s)", step.error_message, step.error_code)

    async def _skip_messages(self, session: Session, cursor: MessageCursor) -> None:
        """Move the cursor past whatever an unfinished run left on the session, without emitting it."""
        try:
            messages = await self.service.list_messages(session, since_id=cursor.last_id)
        except Exception as e:
            logger.warning("[run_controller:run] could not advance cursor for session=%s: %s", session.id, e)
            return
        for msg in messages:
            cursor.accept(msg.id)
        logger.info("[run_controller:run] skipped messages=%d session=%s", len(messages), session.id)
