from helpers import assert_no_pending_frames, auth, chat_socket, create_group, register

from chathub.routers import rooms as rooms_router


def _send(client, token, room_id, content, **extra):
    return client.post(f"/messager/chat/{room_id}/messages", json={"content": content, **extra}, headers=auth(token))


def test_create_and_list_rooms(client):
    a_token, _ = register(client, "alice")
    b_token, b_id = register(client, "bob")
    c_token, _ = register(client, "carol")

    room_id = create_group(client, a_token, [b_id], name="team")

    room = client.get(f"/messager/chat/{room_id}", headers=auth(a_token)).json()["room"]
    assert room["name"] == "team"
    assert room["type"] == "group"
    assert room["member_count"] == 2

    assert [r["id"] for r in client.get("/messager/chat", headers=auth(b_token)).json()["rooms"]] == [room_id]
    assert client.get("/messager/chat", headers=auth(c_token)).json()["rooms"] == []


def test_create_room_requires_name(client):
    token, _ = register(client, "alice")
    resp = client.post("/messager/chat", json={"name": "  "}, headers=auth(token))
    assert resp.status_code == 400


def test_room_access_is_limited_to_members(client):
    a_token, _ = register(client, "alice")
    c_token, _ = register(client, "carol")
    room_id = create_group(client, a_token, [])

    assert client.get(f"/messager/chat/{room_id}", headers=auth(c_token)).status_code == 403
    assert client.get(f"/messager/chat/{room_id}/messages", headers=auth(c_token)).status_code == 403
    assert _send(client, c_token, room_id, "hi").status_code == 403
    assert client.get("/messager/chat/missing", headers=auth(a_token)).status_code == 404
    assert client.get("/messager/chat").status_code == 401


def test_direct_room_is_reused(client):
    a_token, a_id = register(client, "alice")
    b_token, b_id = register(client, "bob")

    first = client.post(f"/messager/chat/direct/{b_id}", headers=auth(a_token))
    assert first.status_code == 201
    room = first.json()["room"]
    assert room["type"] == "direct"
    assert room["member_count"] == 2

    again = client.post(f"/messager/chat/direct/{b_id}", headers=auth(a_token))
    assert again.status_code == 200
    assert again.json()["room"]["id"] == room["id"]

    reverse = client.post(f"/messager/chat/direct/{a_id}", headers=auth(b_token))
    assert reverse.json()["room"]["id"] == room["id"]


def test_direct_room_rejects_self_and_unknown_peer(client):
    token, user_id = register(client, "alice")
    assert client.post(f"/messager/chat/direct/{user_id}", headers=auth(token)).status_code == 400
    assert client.post("/messager/chat/direct/ghost", headers=auth(token)).status_code == 404


def test_send_and_page_messages(client):
    token, user_id = register(client, "alice")
    room_id = create_group(client, token, [])

    ids = [_send(client, token, room_id, f"m{i}").json()["message"]["id"] for i in range(3)]

    page = client.get(f"/messager/chat/{room_id}/messages", headers=auth(token)).json()["messages"]
    assert [m["id"] for m in page] == ids
    assert page[0]["sender"]["username"] == "alice"
    assert page[0]["sender_id"] == user_id

    second = client.get(f"/messager/chat/{room_id}/messages?offset=1&take=1", headers=auth(token)).json()
    assert [m["content"] for m in second["messages"]] == ["m1"]

    clamped = client.get(f"/messager/chat/{room_id}/messages?take=0", headers=auth(token)).json()
    assert len(clamped["messages"]) == 1

    room = client.get(f"/messager/chat/{room_id}", headers=auth(token)).json()["room"]
    assert room["last_message_at"] is not None


def test_reply_includes_quoted_message(client):
    token, _ = register(client, "alice")
    room_id = create_group(client, token, [])
    original = _send(client, token, room_id, "question?").json()["message"]

    reply = _send(client, token, room_id, "answer", reply_id=original["id"]).json()["message"]
    assert reply["reply_id"] == original["id"]
    assert reply["reply_message"]["content"] == "question?"


def test_new_message_is_pushed_to_connected_members(client):
    a_token, a_id = register(client, "alice")
    b_token, b_id = register(client, "bob")
    c_token, _ = register(client, "carol")
    room_id = create_group(client, a_token, [b_id])

    with chat_socket(client, a_token) as a_ws, chat_socket(client, b_token) as b_ws, chat_socket(
        client, c_token
    ) as c_ws:
        message = _send(client, a_token, room_id, "hello").json()["message"]

        for ws in (a_ws, b_ws):
            frame = ws.receive_json()
            assert frame["type"] == "messages.new"
            assert frame["message"]["id"] == message["id"]
            assert frame["message"]["sender_id"] == a_id
            assert frame["message"]["content"] == "hello"
        assert_no_pending_frames(c_ws)


def test_nonce_retry_is_not_rebroadcast(client):
    a_token, _ = register(client, "alice")
    b_token, b_id = register(client, "bob")
    room_id = create_group(client, a_token, [b_id])
    other_room = create_group(client, b_token, [])

    with chat_socket(client, b_token) as b_ws:
        first = _send(client, a_token, room_id, "once", nonce="client-nonce-1").json()["message"]
        assert first["id"] == "client-nonce-1"
        assert b_ws.receive_json()["message"]["id"] == "client-nonce-1"

        retry = _send(client, a_token, room_id, "once", nonce="client-nonce-1")
        assert retry.status_code == 200
        assert retry.json()["message"]["id"] == "client-nonce-1"
        assert_no_pending_frames(b_ws)

    stolen = _send(client, b_token, other_room, "mine", nonce="client-nonce-1")
    assert stolen.status_code == 409


def test_edit_message(client):
    a_token, _ = register(client, "alice")
    b_token, b_id = register(client, "bob")
    room_id = create_group(client, a_token, [b_id])
    message_id = _send(client, a_token, room_id, "draft").json()["message"]["id"]
    url = f"/messager/chat/{room_id}/messages/{message_id}"

    assert client.patch(url, json={"content": "hijack"}, headers=auth(b_token)).status_code == 403
    assert client.patch(url, json={"content": "  "}, headers=auth(a_token)).status_code == 400
    assert client.patch(f"/messager/chat/{room_id}/messages/nope", json={"content": "x"}, headers=auth(a_token)).status_code == 404

    with chat_socket(client, b_token) as b_ws:
        resp = client.patch(url, json={"content": "final"}, headers=auth(a_token))
        assert resp.status_code == 200
        assert resp.json()["message"]["content"] == "final"
        frame = b_ws.receive_json()
        assert frame["type"] == "messages.update"
        assert frame["message"]["content"] == "final"


def test_delete_message_is_soft(client):
    a_token, _ = register(client, "alice")
    b_token, b_id = register(client, "bob")
    room_id = create_group(client, a_token, [b_id])
    message_id = _send(client, a_token, room_id, "oops").json()["message"]["id"]
    url = f"/messager/chat/{room_id}/messages/{message_id}"

    assert client.delete(url, headers=auth(b_token)).status_code == 403

    with chat_socket(client, b_token) as b_ws:
        resp = client.delete(url, headers=auth(a_token))
        assert resp.json() == {"deleted": True}
        assert b_ws.receive_json() == {
            "type": "messages.delete",
            "message": {"message_id": message_id, "room_id": room_id},
        }

    page = client.get(f"/messager/chat/{room_id}/messages", headers=auth(a_token)).json()["messages"]
    assert page[0]["id"] == message_id
    assert page[0]["deleted_at"] is not None


def test_reactions(client):
    a_token, a_id = register(client, "alice")
    b_token, b_id = register(client, "bob")
    c_token, _ = register(client, "carol")
    room_id = create_group(client, a_token, [b_id])
    message_id = _send(client, a_token, room_id, "react to me").json()["message"]["id"]
    url = f"/messager/chat/{room_id}/messages/{message_id}/reactions/heart"

    assert client.put(url, headers=auth(c_token)).status_code == 403

    with chat_socket(client, a_token) as a_ws:
        assert client.put(url, headers=auth(b_token)).json() == {"ok": True}
        assert a_ws.receive_json() == {
            "type": "messages.reaction.added",
            "message": {"message_id": message_id, "room_id": room_id, "emoji": "heart", "user_id": b_id},
        }
        client.put(url, headers=auth(a_token))
        a_ws.receive_json()

        page = client.get(f"/messager/chat/{room_id}/messages", headers=auth(a_token)).json()["messages"]
        assert page[0]["reactions"] == {"heart": [b_id, a_id]}

        assert client.delete(url, headers=auth(b_token)).json() == {"ok": True}
        assert a_ws.receive_json()["type"] == "messages.reaction.removed"

    client.delete(url, headers=auth(a_token))
    page = client.get(f"/messager/chat/{room_id}/messages", headers=auth(a_token)).json()["messages"]
    assert page[0]["reactions"] == {}


def test_reaction_on_unknown_message(client):
    token, _ = register(client, "alice")
    room_id = create_group(client, token, [])
    resp = client.put(f"/messager/chat/{room_id}/messages/ghost/reactions/heart", headers=auth(token))
    assert resp.status_code == 404


def test_concurrent_nonce_insert_returns_stored_message(client, monkeypatch):
    a_token, _ = register(client, "alice")
    b_token, b_id = register(client, "bob")
    room_id = create_group(client, a_token, [b_id])
    first = _send(client, a_token, room_id, "once", nonce="race-nonce").json()["message"]

    real_find = rooms_router._find_nonce
    misses = {"left": 0}

    async def racing_find(nonce):
        # The first lookup misses, as if the other request had not committed yet.
        if misses["left"]:
            misses["left"] -= 1
            return None
        return await real_find(nonce)

    monkeypatch.setattr(rooms_router, "_find_nonce", racing_find)

    with chat_socket(client, b_token) as b_ws:
        misses["left"] = 1
        retry = _send(client, a_token, room_id, "once", nonce="race-nonce")
        assert retry.status_code == 200
        assert retry.json()["message"]["id"] == first["id"]
        assert_no_pending_frames(b_ws)

    misses["left"] = 1
    other = _send(client, b_token, room_id, "mine", nonce="race-nonce")
    assert other.status_code == 409
