"""
Conversation records and the short-lived sessions that bind one pending
exchange to an id the push channel can open.
"""

import logging
import uuid
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from ..config import CONFIG
from ..errors import PersistenceError, SessionNotFound, ValidationError
from ..store import KeyValueStore
from .models import ChatSession, Message


def conversation_key(conversation_id: str) -> str:
    return f"chat:conversation:{conversation_id}"


def session_key(session_id: str) -> str:
    return f"chat:session:{session_id}"


def _parse_messages(raw: Any) -> List[Message]:
    if not isinstance(raw, dict):
        return []
    messages: List[Message] = []
    for item in raw.get("messages") or []:
        try:
            messages.append(Message.model_validate(item))
        except PydanticValidationError:
            logging.warning("Skipping malformed stored message: %r", item)
    return messages


class SessionManager:
    def __init__(
        self,
        store: KeyValueStore,
        history_limit: Optional[int] = None,
        session_ttl_sec: Optional[int] = None,
        conversation_ttl_sec: Optional[int] = None,
    ) -> None:
        self.store = store
        self.history_limit = history_limit if history_limit is not None else CONFIG.history_limit
        self.session_ttl_sec = session_ttl_sec or CONFIG.session_ttl_sec
        self.conversation_ttl_sec = conversation_ttl_sec or CONFIG.conversation_ttl_sec

    async def load_history(self, conversation_id: str) -> Optional[List[Message]]:
        """Stored messages of a conversation, or None when there is no record."""
        raw = await self.store.get_json(conversation_key(conversation_id))
        if raw is None:
            return None
        return _parse_messages(raw)

    async def create_session(self, conversation_id: str, message: str) -> str:
        conversation_id = (conversation_id or "").strip()
        text = (message or "").strip()
        if not conversation_id or not text:
            raise ValidationError("conversationId and message are required")

        history = await self.load_history(conversation_id) or []
        trimmed = history[-self.history_limit:] if self.history_limit > 0 else []
        session = ChatSession(
            conversation_id=conversation_id,
            history=trimmed,
            user_message=Message(role="user", content=text),
        )
        session_id = str(uuid.uuid4())
        await self.store.set_json(
            session_key(session_id),
            session.model_dump(mode="json", exclude_none=True),
            self.session_ttl_sec,
        )
        logging.info(
            "chat session %s created for conversation %s (history=%d)",
            session_id, conversation_id, len(trimmed),
        )
        return session_id

    async def load_session(self, session_id: str, consume: bool = False) -> ChatSession:
        """
        Fetch a session. With `consume=True` the read and the delete happen in
        one store operation, so concurrent openers cannot both obtain it.
        """
        key = session_key(session_id)
        raw = await (self.store.pop_json(key) if consume else self.store.get_json(key))
        if raw is None:
            raise SessionNotFound(session_id)
        try:
            return ChatSession.model_validate(raw)
        except PydanticValidationError:
            logging.warning("chat session %s is corrupt; discarding", session_id)
            raise SessionNotFound(session_id)

    async def delete_session(self, session_id: str) -> None:
        try:
            await self.store.delete(session_key(session_id))
        except PersistenceError as e:
            # The session TTL reclaims it.
            logging.warning("Failed to delete chat session %s: %s", session_id, e)

    async def persist_conversation(self, conversation_id: str, messages: Sequence[Message]) -> None:
        """Overwrite the conversation record (last writer wins) and reset its TTL."""
        await self.store.set_json(
            conversation_key(conversation_id),
            {"messages": [m.to_wire() for m in messages]},
            self.conversation_ttl_sec,
        )
