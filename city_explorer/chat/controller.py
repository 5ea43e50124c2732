"""
Drives one chat exchange from a stored session to a finished transcript.

    PROBING -> (TOOL_CALLS_PENDING -> PROBING)* -> STREAMING -> DONE | ERROR

The model is first asked, without streaming, whether it wants tools. Each
batch of tool calls is executed and fed back before asking again. Once the
model stops requesting tools the answer is streamed token by token. Events
are produced as an async iterator so any transport can carry them.
"""

import contextlib
import enum
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from ..config import CONFIG
from ..errors import ChatError, PersistenceError, SessionNotFound
from .models import (
    ChatSession,
    DoneEvent,
    ErrorEvent,
    Message,
    StreamEvent,
    TokenEvent,
)
from .sessions import SessionManager
from .tools import ToolOrchestrator


GENERIC_ERROR = "Chat request failed unexpectedly"


class ChatState(str, enum.Enum):
    PROBING = "probing"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"


class ToolLoopExceeded(ChatError):
    def __init__(self, rounds: int) -> None:
        super().__init__("Tool loop exceeded")
        self.rounds = rounds


class ModelGateway(Protocol):
    async def probe(self, messages: Sequence[Message], tools: Sequence[Dict[str, Any]]) -> Any: ...

    def stream(
        self, messages: Sequence[Message], tools: Optional[Sequence[Dict[str, Any]]] = None
    ) -> AsyncIterator[Any]: ...


async def _never_disconnected() -> bool:
    return False


def _model_context(history: Sequence[Message]) -> List[Message]:
    # Trimming can cut a tool reply off from the assistant message that requested it.
    start = 0
    while start < len(history) and history[start].role == "tool":
        start += 1
    return list(history[start:])


class StreamingController:
    def __init__(
        self,
        sessions: SessionManager,
        model: ModelGateway,
        tools: ToolOrchestrator,
        max_tool_rounds: Optional[int] = None,
    ) -> None:
        self.sessions = sessions
        self.model = model
        self.tools = tools
        self.max_tool_rounds = max_tool_rounds if max_tool_rounds is not None else CONFIG.max_tool_rounds

    async def open(self, session_id: str) -> ChatSession:
        """Claim a session for streaming. A claimed session cannot be opened again."""
        return await self.sessions.load_session(session_id, consume=True)

    async def stream(
        self,
        session_id: str,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Open the session and run the exchange, reporting a missing session as
        an event. Transports that must choose a status code before the first
        frame (the HTTP push channel) call `open` and `run` separately instead.
        """
        try:
            session = await self.open(session_id)
        except (SessionNotFound, PersistenceError) as e:
            logging.warning("chat session %s could not be opened: %s", session_id, e.message)
            yield ErrorEvent(message=e.message)
            return
        async for event in self.run(session_id, session, is_disconnected):
            yield event

    async def run(
        self,
        session_id: str,
        session: ChatSession,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> AsyncIterator[StreamEvent]:
        try:
            async for event in self._exchange(session_id, session, is_disconnected or _never_disconnected):
                yield event
        finally:
            await self.sessions.delete_session(session_id)

    async def _exchange(
        self,
        session_id: str,
        session: ChatSession,
        is_disconnected: Callable[[], Awaitable[bool]],
    ) -> AsyncIterator[StreamEvent]:
        messages = _model_context(session.history) + [session.user_message]
        transcript = [session.user_message]
        state = ChatState.PROBING
        rounds = 0

        def append(message: Message) -> None:
            messages.append(message)
            transcript.append(message)

        try:
            while state == ChatState.PROBING:
                result = await self.model.probe(messages, self.tools.tools)
                if result.finish_reason != "tool_calls" or not result.tool_calls:
                    state = ChatState.STREAMING
                    break
                if rounds >= self.max_tool_rounds:
                    raise ToolLoopExceeded(rounds)
                rounds += 1
                state = ChatState.TOOL_CALLS_PENDING
                logging.info(
                    "chat session %s: round %d requested %d tool call(s)",
                    session_id, rounds, len(result.tool_calls),
                )
                append(Message(role="assistant", content=result.content, tool_calls=result.tool_calls))
                async for outcome in self.tools.resolve(result.tool_calls):
                    append(outcome.message)
                    yield outcome.event
                state = ChatState.PROBING

            used_tools = any(m.tool_calls for m in messages)
            content = ""
            aborted = False
            chunks = self.model.stream(messages, self.tools.tools if used_tools else None)
            async with contextlib.aclosing(chunks):
                async for chunk in chunks:
                    if await is_disconnected():
                        aborted = True
                        break
                    if chunk.content:
                        content += chunk.content
                        yield TokenEvent(content=chunk.content)
                    if chunk.finish_reason == "stop":
                        break
        except ChatError as e:
            state = ChatState.ERROR
            logging.error("chat session %s failed: %s", session_id, e.message)
            yield ErrorEvent(message=e.message or GENERIC_ERROR)
            return
        except Exception:
            state = ChatState.ERROR
            logging.exception("chat session %s failed unexpectedly", session_id)
            yield ErrorEvent(message=GENERIC_ERROR)
            return

        if aborted:
            logging.info("chat session %s: client disconnected; transcript not saved", session_id)
            return

        append(Message(role="assistant", content=content))
        try:
            await self.sessions.persist_conversation(session.conversation_id, list(session.history) + transcript)
        except PersistenceError as e:
            logging.warning("Failed to persist conversation %s: %s", session.conversation_id, e.message)
        state = ChatState.DONE
        logging.info("chat session %s %s (%d chars)", session_id, state.value, len(content))
        yield DoneEvent()
