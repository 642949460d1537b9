"""
In-memory conversation store keyed by conversation_id. persist_hook hands it the
finished assistant messages of a ChatSession; user turns are kept only if a
caller saves them with save_message.
"""

import logging
import threading

from tripmate.schemas.messages import ChatMessage, HistoryMessage

logger = logging.getLogger(__name__)

# conversation_id -> messages, oldest first
_conversations: dict[str, list[ChatMessage]] = {}
_lock = threading.Lock()


def save_message(conversation_id: str, message: ChatMessage) -> None:
    """Store a copy of the message; saving the same id again replaces the earlier copy."""
    if not conversation_id or not isinstance(conversation_id, str):
        logger.info("[session_store:save_message] skip invalid conversation_id=%r", conversation_id)
        return
    snapshot = message.model_copy(deep=True)
    with _lock:
        messages = _conversations.setdefault(conversation_id, [])
        for i, existing in enumerate(messages):
            if existing.id == message.id:
                messages[i] = snapshot
                break
        else:
            messages.append(snapshot)
    logger.info("[session_store:save_message] conversation_id=%s role=%s status=%s content_len=%d",
                conversation_id[:16], message.role, message.status, len(message.content))


def get_messages(conversation_id: str) -> list[ChatMessage]:
    """Return stored messages (copies, so callers cannot mutate the store)."""
    with _lock:
        return [m.model_copy(deep=True) for m in _conversations.get(conversation_id) or []]


def get_history(conversation_id: str) -> list[HistoryMessage]:
    return [m.to_history() for m in get_messages(conversation_id) if m.content]


def clear(conversation_id: str | None = None) -> None:
    with _lock:
        if conversation_id is None:
            _conversations.clear()
        else:
            _conversations.pop(conversation_id, None)


def persist_hook(conversation_id: str):
    """Persistence hook for ChatSession bound to one conversation."""

    def _persist(message: ChatMessage) -> None:
        save_message(conversation_id, message)

    return _persist
