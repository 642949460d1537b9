"""
Tests for the in-memory conversation store.
"""

import pytest

from tripmate.client.reducer import ChatSession
from tripmate.core import session_store
from tripmate.schemas.events import ContentEvent, DoneEvent
from tripmate.schemas.messages import ChatMessage


@pytest.fixture(autouse=True)
def _clean_store():
    session_store.clear()
    yield
    session_store.clear()


def test_save_and_get_messages_in_order() -> None:
    session_store.save_message("c1", ChatMessage(role="user", content="Q1"))
    session_store.save_message("c1", ChatMessage(role="assistant", content="A1"))
    assert [m.content for m in session_store.get_messages("c1")] == ["Q1", "A1"]
    assert session_store.get_messages("other") == []


def test_saving_same_id_replaces() -> None:
    msg = ChatMessage(role="assistant", content="draft")
    session_store.save_message("c1", msg)
    msg.content = "final"
    session_store.save_message("c1", msg)
    stored = session_store.get_messages("c1")
    assert len(stored) == 1 and stored[0].content == "final"


def test_store_holds_copies() -> None:
    msg = ChatMessage(role="assistant", content="A1")
    session_store.save_message("c1", msg)
    msg.content = "mutated"
    session_store.get_messages("c1")[0].content = "also mutated"
    assert session_store.get_messages("c1")[0].content == "A1"


def test_history_skips_empty_messages() -> None:
    session_store.save_message("c1", ChatMessage(role="user", content="Q1"))
    session_store.save_message("c1", ChatMessage(role="assistant", content="", status="cancelled"))
    assert [(h.role, h.content) for h in session_store.get_history("c1")] == [("user", "Q1")]


def test_invalid_conversation_id_is_ignored() -> None:
    session_store.save_message("", ChatMessage(role="user", content="Q1"))
    assert session_store.get_messages("") == []


def test_clear_one_conversation() -> None:
    session_store.save_message("c1", ChatMessage(role="user", content="Q1"))
    session_store.save_message("c2", ChatMessage(role="user", content="Q2"))
    session_store.clear("c1")
    assert session_store.get_messages("c1") == []
    assert len(session_store.get_messages("c2")) == 1


def test_persist_hook_binds_conversation() -> None:
    hook = session_store.persist_hook("c9")
    hook(ChatMessage(role="assistant", content="done"))
    assert session_store.get_messages("c9")[0].content == "done"


@pytest.mark.asyncio
async def test_persist_hook_receives_only_finished_answers() -> None:
    async def send(content, history, token):
        yield ContentEvent(content="推荐去都江堰。")
        yield DoneEvent()

    session = ChatSession(send, persist=session_store.persist_hook("c7"))
    reply = await session.send_message("成都周边一日游")

    stored = session_store.get_messages("c7")
    assert [(m.role, m.id, m.status) for m in stored] == [("assistant", reply.id, "done")]
    assert [m.role for m in session.messages] == ["user", "assistant"]
