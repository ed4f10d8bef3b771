"""Tests for conversation memory and its SQLite persistence."""
import pytest

from knowledge_base.errors import NotFoundError
from knowledge_base.memory import ConversationManager
from knowledge_base.memory.manager import title_from_question


@pytest.fixture
def manager(temp_db):
    return ConversationManager(history_window=4)


def test_create_and_get_conversation(manager):
    conversation = manager.create_conversation("Refund policy")

    fetched = manager.get_conversation(conversation["id"])

    assert fetched["title"] == "Refund policy"
    assert fetched["message_count"] == 0


def test_unknown_conversation_raises(manager):
    with pytest.raises(NotFoundError):
        manager.get_conversation("missing")

    with pytest.raises(NotFoundError):
        manager.get_messages("missing")

    with pytest.raises(NotFoundError):
        manager.delete_conversation("missing")


def test_turns_keep_insertion_order_and_sources(manager):
    conversation_id = manager.create_conversation()["id"]
    sources = [{"document_id": "doc-1", "text": "Refunds take 5 days.", "similarity": 0.9}]

    manager.add_turn(conversation_id, "user", "How long do refunds take?")
    manager.add_turn(conversation_id, "assistant", "Five days.", sources)

    turns = manager.get_turns(conversation_id)

    assert [(t.role, t.text) for t in turns] == [
        ("user", "How long do refunds take?"),
        ("assistant", "Five days."),
    ]
    assert turns[0].sources == []
    assert turns[1].sources == sources
    assert manager.get_conversation(conversation_id)["message_count"] == 2


def test_recent_turns_are_bounded_and_chronological(manager):
    conversation_id = manager.create_conversation()["id"]
    for i in range(6):
        manager.add_turn(conversation_id, "user" if i % 2 == 0 else "assistant", f"turn {i}")

    recent = manager.get_recent_turns(conversation_id)

    assert [t.text for t in recent] == ["turn 2", "turn 3", "turn 4", "turn 5"]
    assert [t.text for t in manager.get_recent_turns(conversation_id, limit=2)] == [
        "turn 4",
        "turn 5",
    ]


def test_invalid_role_is_rejected(manager):
    conversation_id = manager.create_conversation()["id"]

    with pytest.raises(ValueError):
        manager.add_turn(conversation_id, "system", "not allowed")


def test_delete_removes_conversation_and_messages(manager, temp_db):
    conversation_id = manager.create_conversation()["id"]
    manager.add_turn(conversation_id, "user", "hello")

    manager.delete_conversation(conversation_id)

    assert temp_db.get_conversation(conversation_id) is None
    assert temp_db.get_messages(conversation_id) == []


def test_list_conversations(manager):
    first = manager.create_conversation("first")["id"]
    second = manager.create_conversation("second")["id"]

    ids = {c["id"] for c in manager.list_conversations()}

    assert ids == {first, second}


def test_title_from_question():
    assert title_from_question("Short question?") == "Short question?"

    long_question = "q" * 80
    assert title_from_question(long_question) == "q" * 50 + "..."
    assert title_from_question("q" * 50) == "q" * 50
