"""
Conversation state and stream aggregation.

ConversationState owns everything that must survive between turns: the active
document, one session per agent role, and a message cursor per session so each
assistant message is emitted exactly once. track() threads the session carried
by each StreamChunk back into the state as the caller consumes the stream.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator

from docqa.agent.service import Session

logger = logging.getLogger(__name__)


class AgentRole(str, Enum):
    DOCUMENT_QA = "document_qa"
    CROSS_DOCUMENT = "cross_document"
    SUMMARIZER = "summarizer"
    ROUTER = "router"


# Sessions dropped when the active document changes.
DOCUMENT_SCOPED_ROLES = frozenset({AgentRole.DOCUMENT_QA, AgentRole.ROUTER})


@dataclass(frozen=True)
class StreamChunk:
    text: str
    session: Session


@dataclass
class MessageCursor:
    """Last message id seen on one session, plus every id already emitted."""

    last_id: str | None = None
    seen: set[str] = field(default_factory=set)

    def accept(self, message_id: str) -> bool:
        """Record message_id; False if it was already seen."""
        self.last_id = message_id
        if message_id in self.seen:
            return False
        self.seen.add(message_id)
        return True


@dataclass
class ConversationState:
    active_document: str = ""
    sessions: dict[AgentRole, Session] = field(default_factory=dict)
    cursors: dict[str, MessageCursor] = field(default_factory=dict)

    def session_for(self, role: AgentRole) -> Session | None:
        return self.sessions.get(role)

    def remember(self, role: AgentRole, session: Session) -> None:
        self.sessions[role] = session

    def cursor_for(self, session: Session) -> MessageCursor:
        cursor = self.cursors.get(session.id)
        if cursor is None:
            cursor = self.cursors[session.id] = MessageCursor()
        return cursor

    def set_active_document(self, name: str) -> None:
        self.active_document = (name or "").strip()
        dropped = self._invalidate(DOCUMENT_SCOPED_ROLES)
        logger.info("[conversation:set_active_document] document=%r dropped_sessions=%s", self.active_document, dropped)

    def reset(self) -> None:
        dropped = self._invalidate(frozenset(AgentRole))
        logger.info("[conversation:reset] dropped_sessions=%s", dropped)

    def _invalidate(self, roles: frozenset) -> list[str]:
        dropped = []
        for role in roles:
            session = self.sessions.pop(role, None)
            if session is not None:
                self.cursors.pop(session.id, None)
                dropped.append(role.value)
        return sorted(dropped)


async def track(
    chunks: AsyncIterator[StreamChunk], state: ConversationState, role: AgentRole
) -> AsyncIterator[StreamChunk]:
    """Pass chunks through, keeping state's session for role up to date."""
    async for chunk in chunks:
        state.remember(role, chunk.session)
        yield chunk


async def collect_text(chunks: AsyncIterator[StreamChunk]) -> str:
    """Drain a chunk stream into a single string."""
    parts: list[str] = []
    async for chunk in chunks:
        parts.append(chunk.text)
    return "".join(parts)
