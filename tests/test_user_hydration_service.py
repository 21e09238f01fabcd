from __future__ import annotations

from pulse.models import Conversation, ConversationParticipant
from pulse.services import user_hydration_service


class _MessageObject:
    def __init__(self, sender_id: str, recipient_id: str | None) -> None:
        self.sender_id = sender_id
        self.recipient_id = recipient_id


def _conversation(*member_ids: str) -> Conversation:
    conversation = Conversation()
    conversation.participants = [
        ConversationParticipant(user_id=member_id, position=index) for index, member_id in enumerate(member_ids)
    ]
    return conversation


def test_collectors_deduplicate_and_include_all_referenced_ids():
    conversations = [_conversation("u1", "u2"), _conversation("u2", "u3"), _conversation()]
    messages = [_MessageObject("u2", "u4"), _MessageObject("u1", None), _MessageObject("", "u5")]

    assert user_hydration_service.collect_user_ids_from_conversations(conversations) == {"u1", "u2", "u3"}
    assert user_hydration_service.collect_user_ids(messages, "sender_id", "recipient_id") == {"u1", "u2", "u4", "u5"}


def test_profiles_by_id_skips_unknown_ids(db, make_user):
    alice = make_user("alice", avatar="a.png")

    profiles = user_hydration_service.profiles_by_id(db, [alice.id, "missing", " ", alice.id])

    assert list(profiles) == [alice.id]
    assert profiles[alice.id].avatar == "a.png"
