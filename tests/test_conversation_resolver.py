import threading

import pytest

from botrelay.conversations import schemas as convo_schemas
from botrelay.conversations.models import Fingerprint
from botrelay.conversations.repository import InMemoryConversationRepository
from botrelay.conversations.resolver import ConversationResolver
from botrelay.errors import ConversationConflictError

VISITOR = Fingerprint(ip="203.0.113.9", user_agent="Widget/1.0")


def test_new_visitor_gets_new_conversation(store):
    resolver = ConversationResolver(store.conversations)

    conversation = resolver.resolve(
        store.bot.id, None, VISITOR, convo_schemas.UserInfo(email="a@example.test")
    )

    assert conversation.status == "new"
    assert conversation.messages == []
    assert conversation.user_info.ip == VISITOR.ip
    assert conversation.user_info.user_agent == VISITOR.user_agent
    assert conversation.user_info.email == "a@example.test"
    assert store.conversations.get_conversation(conversation.id) is not None


def test_same_fingerprint_reuses_open_conversation(store):
    resolver = ConversationResolver(store.conversations)

    first = resolver.resolve(store.bot.id, None, VISITOR)
    second = resolver.resolve(store.bot.id, None, VISITOR)
    other = resolver.resolve(store.bot.id, None, Fingerprint(ip="198.51.100.1", user_agent="Widget/1.0"))

    assert first.id == second.id
    assert other.id != first.id


def test_explicit_id_wins_over_fingerprint(store):
    resolver = ConversationResolver(store.conversations)
    existing = resolver.resolve(store.bot.id, None, Fingerprint(ip="198.51.100.7"))

    resolved = resolver.resolve(store.bot.id, existing.id, VISITOR)

    assert resolved.id == existing.id


@pytest.mark.parametrize("conversation_id", ["does-not-exist", "not-a-uuid"])
def test_unknown_id_falls_back_to_fingerprint(store, conversation_id):
    resolver = ConversationResolver(store.conversations)
    by_fingerprint = resolver.resolve(store.bot.id, None, VISITOR)

    resolved = resolver.resolve(store.bot.id, conversation_id, VISITOR)

    assert resolved.id == by_fingerprint.id


def test_id_of_another_bot_is_ignored(store):
    foreign = store.conversations.find_or_create_open("other-bot", VISITOR)
    resolver = ConversationResolver(store.conversations)

    resolved = resolver.resolve(store.bot.id, foreign.id, VISITOR)

    assert resolved.id != foreign.id
    assert resolved.bot_id == store.bot.id


def test_closed_conversation_is_not_reused(store):
    resolver = ConversationResolver(store.conversations)
    first = resolver.resolve(store.bot.id, None, VISITOR)
    first.status = "closed"
    store.conversations.save_conversation(first)

    second = resolver.resolve(store.bot.id, None, VISITOR)

    assert second.id != first.id
    assert second.status == "new"


def test_reopening_conflicting_conversation_is_rejected(store):
    resolver = ConversationResolver(store.conversations)
    first = resolver.resolve(store.bot.id, None, VISITOR)
    first.status = "closed"
    store.conversations.save_conversation(first)
    resolver.resolve(store.bot.id, None, VISITOR)

    first.status = "active"
    with pytest.raises(ConversationConflictError):
        store.conversations.save_conversation(first)


def test_concurrent_first_messages_share_one_conversation():
    repository = InMemoryConversationRepository()
    resolver = ConversationResolver(repository)
    ids = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        ids.append(resolver.resolve("bot-1", None, VISITOR).id)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(set(ids)) == 1
    assert repository.count_conversations("bot-1") == 1
