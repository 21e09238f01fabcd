from __future__ import annotations

from sqlalchemy import func, select

import pulse.db.session as db_session
from pulse.models import Conversation, Message


def _send(client, headers, recipient_id: str, content: str | None = "hello", **extra):
    body: dict[str, object] = {"recipientId": recipient_id, "content": content, **extra}
    return client.post("/v1/messages/send", json=body, headers=headers)


def _row_counts() -> tuple[int, int]:
    with db_session.open_session() as session:
        messages = session.scalar(select(func.count(Message.id)))
        conversations = session.scalar(select(func.count(Conversation.id)))
    return messages, conversations


def _unread(client, headers) -> int:
    response = client.get("/v1/messages/unread-count", headers=headers)
    assert response.status_code == 200
    return response.json()["data"]["unreadCount"]


def _visible_ids(client, headers, conversation_id: str) -> list[str]:
    response = client.get(f"/v1/conversations/{conversation_id}/messages", headers=headers)
    assert response.status_code == 200
    return [message["id"] for message in response.json()["data"]["messages"]]


def test_first_send_creates_conversation_and_second_reuses_it(client, register):
    alice_id, alice_headers = register("alice")
    bob_id, _ = register("bob")

    first = _send(client, alice_headers, bob_id, "  hello  ")
    assert first.status_code == 201
    data = first.json()["data"]
    assert data["conversationId"]
    assert data["message"]["content"] == {"type": "text", "text": "hello", "media": None}
    assert data["message"]["senderId"] == alice_id
    assert data["message"]["recipientId"] == bob_id
    assert data["message"]["sender"]["username"] == "alice"
    assert data["message"]["readBy"] == []

    second = _send(client, alice_headers, bob_id, "again")
    assert second.json()["data"]["conversationId"] == data["conversationId"]
    assert _row_counts() == (2, 1)


def test_invalid_sends_have_no_side_effects(client, register):
    alice_id, alice_headers = register("alice")
    bob_id, _ = register("bob")

    cases = [
        (alice_id, {"content": "hi"}, 400, "cannot_message_self"),
        (bob_id, {"content": "x" * 1001}, 400, "message_too_long"),
        (bob_id, {"content": "   "}, 400, "message_content_required"),
        (bob_id, {"content": None}, 400, "message_content_required"),
        (bob_id, {"content": None, "type": "image"}, 400, "media_required"),
        (bob_id, {"content": None, "type": "file", "media": {"url": " "}}, 400, "media_required"),
        ("no-such-user", {"content": "hi"}, 404, "recipient_not_found"),
    ]
    for recipient_id, extra, status_code, code in cases:
        response = client.post("/v1/messages/send", json={"recipientId": recipient_id, **extra}, headers=alice_headers)
        assert response.status_code == status_code, extra
        assert response.json()["error"]["code"] == code

    assert _row_counts() == (0, 0)


def test_text_limit_applies_after_trimming(client, register):
    _, alice_headers = register("alice")
    bob_id, _ = register("bob")

    response = _send(client, alice_headers, bob_id, " " + "x" * 1000 + "\n")
    assert response.status_code == 201
    assert len(response.json()["data"]["message"]["content"]["text"]) == 1000


def test_media_message_carries_descriptor(client, register):
    _, alice_headers = register("alice")
    bob_id, _ = register("bob")

    media = {"url": "https://cdn.example/cat.png", "filename": "cat.png", "size": 2048, "mimetype": "image/png"}
    response = _send(client, alice_headers, bob_id, None, type="image", media=media)
    assert response.status_code == 201
    assert response.json()["data"]["message"]["content"] == {"type": "image", "text": None, "media": media}


def test_fetch_returns_oldest_first_and_marks_page_read(client, register):
    _, alice_headers = register("alice")
    bob_id, bob_headers = register("bob")
    conversation_id = _send(client, alice_headers, bob_id, "one").json()["data"]["conversationId"]
    _send(client, alice_headers, bob_id, "two")
    _send(client, alice_headers, bob_id, "three")
    assert _unread(client, bob_headers) == 3

    page = client.get(f"/v1/conversations/{conversation_id}/messages", params={"limit": 2}, headers=bob_headers)
    body = page.json()["data"]
    assert [m["content"]["text"] for m in body["messages"]] == ["two", "three"]
    assert body["pagination"] == {"page": 1, "limit": 2, "hasMore": True}
    assert body["conversation"]["id"] == conversation_id
    assert _unread(client, bob_headers) == 1

    older = client.get(
        f"/v1/conversations/{conversation_id}/messages",
        params={"limit": 2, "page": 2},
        headers=bob_headers,
    )
    assert [m["content"]["text"] for m in older.json()["data"]["messages"]] == ["one"]
    assert older.json()["data"]["pagination"]["hasMore"] is False
    assert _unread(client, bob_headers) == 0

    # The sender viewing the thread never creates receipts for themself.
    alice_view = client.get(f"/v1/conversations/{conversation_id}/messages", headers=alice_headers)
    for message in alice_view.json()["data"]["messages"]:
        assert [receipt["userId"] for receipt in message["readBy"]] == [bob_id]
        assert message["isRead"] is True


def test_mark_read_endpoint(client, register):
    _, alice_headers = register("alice")
    bob_id, bob_headers = register("bob")
    _, carol_headers = register("carol")
    message_id = _send(client, alice_headers, bob_id).json()["data"]["message"]["id"]

    assert client.put(f"/v1/messages/{message_id}/read", headers=alice_headers).status_code == 200
    assert _unread(client, bob_headers) == 1

    assert client.put(f"/v1/messages/{message_id}/read", headers=bob_headers).status_code == 200
    assert client.put(f"/v1/messages/{message_id}/read", headers=bob_headers).status_code == 200
    assert _unread(client, bob_headers) == 0

    outsider = client.put(f"/v1/messages/{message_id}/read", headers=carol_headers)
    assert outsider.status_code == 404
    missing = client.put("/v1/messages/no-such-message/read", headers=bob_headers)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "message_not_found"


def test_delete_for_me_hides_only_for_requester(client, register):
    _, alice_headers = register("alice")
    bob_id, bob_headers = register("bob")
    sent = _send(client, alice_headers, bob_id).json()["data"]
    conversation_id, message_id = sent["conversationId"], sent["message"]["id"]

    response = client.delete(f"/v1/messages/{message_id}", headers=bob_headers)
    assert response.status_code == 200
    again = client.request("DELETE", f"/v1/messages/{message_id}", json={"deleteFor": "me"}, headers=bob_headers)
    assert again.status_code == 200

    assert _visible_ids(client, bob_headers, conversation_id) == []
    assert _visible_ids(client, alice_headers, conversation_id) == [message_id]


def test_delete_for_everyone_is_final_and_sender_only(client, register):
    _, alice_headers = register("alice")
    bob_id, bob_headers = register("bob")
    sent = _send(client, alice_headers, bob_id).json()["data"]
    conversation_id, message_id = sent["conversationId"], sent["message"]["id"]
    assert _unread(client, bob_headers) == 1

    forbidden = client.request(
        "DELETE",
        f"/v1/messages/{message_id}",
        json={"deleteFor": "everyone"},
        headers=bob_headers,
    )
    assert forbidden.status_code == 403
    assert forbidden.json()["error"]["code"] == "delete_for_everyone_forbidden"

    deleted = client.request(
        "DELETE",
        f"/v1/messages/{message_id}",
        json={"deleteFor": "everyone"},
        headers=alice_headers,
    )
    assert deleted.status_code == 200

    assert _visible_ids(client, alice_headers, conversation_id) == []
    assert _visible_ids(client, bob_headers, conversation_id) == []
    assert _unread(client, bob_headers) == 0

    listing = client.get("/v1/conversations", headers=bob_headers).json()["data"]["conversations"]
    assert listing[0]["lastMessage"] is None


def test_delete_requires_party_and_existing_message(client, register):
    _, alice_headers = register("alice")
    bob_id, _ = register("bob")
    _, carol_headers = register("carol")
    message_id = _send(client, alice_headers, bob_id).json()["data"]["message"]["id"]

    outsider = client.delete(f"/v1/messages/{message_id}", headers=carol_headers)
    assert outsider.status_code == 403
    assert outsider.json()["error"]["code"] == "not_authorized"

    missing = client.delete("/v1/messages/no-such-message", headers=alice_headers)
    assert missing.status_code == 404


def test_unread_count_tracks_sends_reads_and_deletes(client, register):
    alice_id, alice_headers = register("alice")
    bob_id, bob_headers = register("bob")
    carol_id, carol_headers = register("carol")

    to_bob = [_send(client, alice_headers, bob_id, f"b{i}").json()["data"]["message"]["id"] for i in range(3)]
    _send(client, carol_headers, bob_id, "from carol")
    _send(client, bob_headers, alice_id, "reply")

    assert _unread(client, bob_headers) == 4
    assert _unread(client, alice_headers) == 1
    assert _unread(client, carol_headers) == 0

    client.put(f"/v1/messages/{to_bob[0]}/read", headers=bob_headers)
    client.request("DELETE", f"/v1/messages/{to_bob[1]}", json={"deleteFor": "everyone"}, headers=alice_headers)
    # Hiding a message for yourself does not count as reading it.
    client.delete(f"/v1/messages/{to_bob[2]}", headers=bob_headers)

    assert _unread(client, bob_headers) == 2
    assert carol_id
