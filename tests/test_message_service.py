from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
import threading

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

import pulse.db.session as db_session
from pulse.core.errors import APIError
from pulse.models import Conversation, ConversationParticipant, Message, RealtimeOutboxEvent, direct_key_for
from pulse.services import conversation_service, message_service, realtime_service, user_hydration_service


def _send(db, sender, recipient, text="hello"):
    return message_service.send_message(db, sender_id=sender.id, recipient_id=recipient.id, text=text)


def test_losing_a_creation_race_returns_the_winner(db, make_user, monkeypatch):
    alice = make_user("alice")
    bob = make_user("bob")

    with db_session.open_session() as other:
        winner = Conversation(is_group=False, direct_key=direct_key_for(alice.id, bob.id))
        winner.participants = [
            ConversationParticipant(user_id=bob.id, position=0),
            ConversationParticipant(user_id=alice.id, position=1),
        ]
        other.add(winner)
        other.commit()
        winner_id = winner.id

    real_finder = conversation_service.find_direct_conversation
    calls = []

    def stale_finder(db, *, user_id, other_user_id):
        calls.append(user_id)
        if len(calls) == 1:
            return None
        return real_finder(db, user_id=user_id, other_user_id=other_user_id)

    monkeypatch.setattr(conversation_service, "find_direct_conversation", stale_finder)

    conversation, created = conversation_service.ensure_direct_conversation(db, user_id=alice.id, other_user_id=bob.id)

    assert created is False
    assert conversation.id == winner_id
    assert len(calls) == 2
    assert db.scalar(select(func.count(Conversation.id))) == 1


def test_send_reuses_conversation_regardless_of_direction(db, make_user):
    alice = make_user("alice")
    bob = make_user("bob")

    first = _send(db, alice, bob)
    reply = _send(db, bob, alice, "hi back")

    assert first.conversation_id == reply.conversation_id
    conversation = db.get(Conversation, first.conversation_id)
    db.refresh(conversation)
    assert conversation.last_message_id == reply.id


def test_last_activity_never_moves_backwards(db, make_user):
    alice = make_user("alice")
    bob = make_user("bob")
    newest = _send(db, alice, bob, "newest")

    advanced = conversation_service.advance_last_activity(
        db,
        conversation_id=newest.conversation_id,
        message_id="older-message",
        occurred_at=newest.created_at - timedelta(seconds=5),
    )
    db.commit()

    assert advanced is False
    conversation = db.get(Conversation, newest.conversation_id)
    db.refresh(conversation)
    assert conversation.last_message_id == newest.id


def test_mark_read_is_idempotent_and_ignores_the_sender(db, make_user):
    alice = make_user("alice")
    bob = make_user("bob")
    carol = make_user("carol")
    message = _send(db, alice, bob)

    assert message_service.mark_read(db, message_id=message.id, reader_id=alice.id) is False
    assert message_service.mark_read(db, message_id=message.id, reader_id=bob.id) is True
    assert message_service.mark_read(db, message_id=message.id, reader_id=bob.id) is False

    db.refresh(message)
    assert [receipt.user_id for receipt in message.read_receipts] == [bob.id]

    with pytest.raises(APIError) as excinfo:
        message_service.mark_read(db, message_id=message.id, reader_id=carol.id)
    assert excinfo.value.status_code == 404


def test_validate_content_rules(db):
    assert message_service.validate_content("text", "  hi  ", None) == ("hi", None)

    with pytest.raises(APIError) as too_long:
        message_service.validate_content("text", "x" * 1001, None)
    assert too_long.value.code == "message_too_long"

    with pytest.raises(APIError) as no_media:
        message_service.validate_content("video", None, None)
    assert no_media.value.code == "media_required"


def test_unread_count_matches_its_definition(db, make_user):
    alice = make_user("alice")
    bob = make_user("bob")

    sent = [_send(db, alice, bob, f"m{i}") for i in range(4)]
    _send(db, bob, alice, "reply")
    message_service.mark_read(db, message_id=sent[0].id, reader_id=bob.id)
    message_service.delete_message(db, message_id=sent[1].id, user_id=alice.id, delete_for="everyone")
    message_service.delete_message(db, message_id=sent[2].id, user_id=bob.id, delete_for="me")

    # Recipient is bob, not deleted for everyone, and bob holds no receipt.
    assert message_service.unread_count(db, user_id=bob.id) == 2
    assert message_service.unread_count(db, user_id=alice.id) == 1
    assert message_service.unread_counts_by_conversation(
        db,
        user_id=bob.id,
        conversation_ids=[sent[0].conversation_id],
    ) == {sent[0].conversation_id: 2}


def test_listing_marks_only_the_returned_page(db, make_user):
    alice = make_user("alice")
    bob = make_user("bob")
    sent = [_send(db, alice, bob, f"m{i}") for i in range(3)]

    _, page = message_service.list_conversation_messages(
        db,
        conversation_id=sent[0].conversation_id,
        user_id=bob.id,
        limit=2,
        page=1,
    )

    assert [message.id for message in page] == [sent[1].id, sent[2].id]
    assert message_service.unread_count(db, user_id=bob.id) == 1


def test_delete_for_everyone_by_recipient_changes_nothing(db, make_user):
    alice = make_user("alice")
    bob = make_user("bob")
    message = _send(db, alice, bob)

    with pytest.raises(APIError) as excinfo:
        message_service.delete_message(db, message_id=message.id, user_id=bob.id, delete_for="everyone")

    assert excinfo.value.code == "delete_for_everyone_forbidden"
    db.refresh(message)
    assert message.is_deleted is False


def test_concurrent_starts_produce_one_conversation(db, make_user):
    alice = make_user("alice")
    bob = make_user("bob")
    workers = 8
    barrier = threading.Barrier(workers)

    def start(index: int) -> str:
        user_id, other_user_id = (alice.id, bob.id) if index % 2 == 0 else (bob.id, alice.id)
        with db_session.open_session() as session:
            barrier.wait(timeout=10)
            conversation, _ = conversation_service.get_or_create_direct_conversation(
                session,
                user_id=user_id,
                other_user_id=other_user_id,
            )
            return conversation.id

    with ThreadPoolExecutor(max_workers=workers) as pool:
        conversation_ids = list(pool.map(start, range(workers)))

    assert len(set(conversation_ids)) == 1
    assert db.scalar(select(func.count(Conversation.id))) == 1


def test_leaving_keeps_conversation_for_remaining_party(db, make_user):
    alice = make_user("alice")
    bob = make_user("bob")
    message = _send(db, alice, bob)

    left = conversation_service.leave_conversation(db, conversation_id=message.conversation_id, user_id=alice.id)

    assert left.is_active is True
    assert left.direct_key is None
    assert [c.id for c in conversation_service.list_user_conversations(db, bob.id, limit=20, page=1)] == [left.id]
    assert conversation_service.find_direct_conversation(db, user_id=alice.id, other_user_id=bob.id) is None

    conversation_service.leave_conversation(db, conversation_id=left.id, user_id=bob.id)
    assert left.is_active is False


def test_realtime_failure_never_reaches_the_sender(db, make_user, monkeypatch):
    alice = make_user("alice")
    bob = make_user("bob")
    message = _send(db, alice, bob)

    def broken_profiles(*args, **kwargs):
        raise OperationalError("SELECT users", {}, Exception("database is gone"))

    monkeypatch.setattr(user_hydration_service, "profiles_by_id", broken_profiles)

    assert realtime_service.emit_new_message(db, message=message) is False
    assert db.scalar(select(func.count(RealtimeOutboxEvent.id))) == 0
    assert db.get(Message, message.id) is not None
