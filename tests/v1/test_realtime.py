# tests/v1/test_realtime.py
"""Tests for the WebSocket channel."""

from tibabu_connect.core.security import create_access_token
from tibabu_connect.services.messages import conversation_id

WS_URL = "/api/v1/ws"


def _authenticate(ws, user) -> None:
    ws.send_json({"event": "authenticate", "data": {"token": create_access_token(user.id)}})
    assert ws.receive_json() == {"event": "authenticated", "data": {"user_id": user.id}}


def _flush(ws) -> None:
    """Round-trip a frame so every earlier frame has been handled."""
    ws.send_json({"event": "sync"})
    assert ws.receive_json()["event"] == "error"


def test_authenticate_binds_user(client, fanout, doctor) -> None:
    with client.websocket_connect(WS_URL) as ws:
        _authenticate(ws, doctor)
        assert fanout.registry.lookup(doctor.id) is not None

    assert fanout.registry.lookup(doctor.id) is None


def test_authenticate_with_invalid_token(client, fanout) -> None:
    with client.websocket_connect(WS_URL) as ws:
        ws.send_json({"event": "authenticate", "data": {"token": "forged"}})
        reply = ws.receive_json()

    assert reply == {"event": "error", "data": {"detail": "Could not validate credentials"}}
    assert fanout.registry.connected_user_ids() == []


def test_authenticate_rejects_unknown_user(client, fanout) -> None:
    with client.websocket_connect(WS_URL) as ws:
        ws.send_json({"event": "authenticate", "data": {"token": create_access_token("0" * 32)}})
        reply = ws.receive_json()

    assert reply == {"event": "error", "data": {"detail": "User not found"}}
    assert fanout.registry.connected_user_ids() == []


def test_authenticate_rejects_inactive_user(client, fanout, user_factory) -> None:
    suspended = user_factory("Wanjiru Njeri", "wanjiru@example.com", is_active=False)

    with client.websocket_connect(WS_URL) as ws:
        ws.send_json({"event": "authenticate", "data": {"token": create_access_token(suspended.id)}})
        reply = ws.receive_json()
        ws.send_json({"event": "join-conversation", "data": f"{suspended.id}-{'f' * 32}"})
        join_reply = ws.receive_json()

    assert reply == {"event": "error", "data": {"detail": "User not found"}}
    assert join_reply["data"]["detail"] == "Not authenticated"
    assert fanout.registry.lookup(suspended.id) is None


def test_malformed_frame_reports_error(client) -> None:
    with client.websocket_connect(WS_URL) as ws:
        ws.send_text("not json")
        assert ws.receive_json() == {"event": "error", "data": {"detail": "Malformed frame"}}


def test_join_requires_authentication(client, patient, doctor) -> None:
    with client.websocket_connect(WS_URL) as ws:
        ws.send_json(
            {"event": "join-conversation", "data": conversation_id(patient.id, doctor.id)}
        )
        assert ws.receive_json()["data"]["detail"] == "Not authenticated"


def test_join_rejects_foreign_conversation(client, patient, doctor, other_patient) -> None:
    with client.websocket_connect(WS_URL) as ws:
        _authenticate(ws, other_patient)
        ws.send_json(
            {
                "event": "join-conversation",
                "data": {"conversation_id": conversation_id(patient.id, doctor.id)},
            }
        )
        assert ws.receive_json()["data"]["detail"] == "Not a participant of this conversation"


def test_send_pushes_to_receiver_connection(client, send, patient, doctor, patient_headers) -> None:
    with client.websocket_connect(WS_URL) as ws:
        _authenticate(ws, doctor)

        sent = send(patient_headers, doctor.id, "Hello Dr. B").json()["message"]
        pushed = ws.receive_json()

    assert pushed["event"] == "message-received"
    assert pushed["data"]["id"] == sent["id"]
    assert pushed["data"]["content"] == "Hello Dr. B"


def test_send_pushes_to_room_and_sender(client, send, fanout, patient, doctor, patient_headers) -> None:
    room = conversation_id(patient.id, doctor.id)
    with client.websocket_connect(WS_URL) as doctor_ws, client.websocket_connect(WS_URL) as patient_ws:
        _authenticate(doctor_ws, doctor)
        _authenticate(patient_ws, patient)
        doctor_ws.send_json({"event": "join-conversation", "data": {"conversation_id": room}})
        _flush(doctor_ws)
        assert len(fanout.room_members(room)) == 1

        sent = send(patient_headers, doctor.id, "in the room").json()["message"]

        doctor_events = [doctor_ws.receive_json(), doctor_ws.receive_json()]
        patient_event = patient_ws.receive_json()

    wrapped = next(e for e in doctor_events if "conversation_id" in e["data"])
    direct = next(e for e in doctor_events if "conversation_id" not in e["data"])
    assert wrapped["event"] == "message-received"
    assert wrapped["data"] == {"message": sent, "conversation_id": room}
    assert direct == {"event": "message-received", "data": sent}
    assert patient_event == {"event": "message-sent", "data": sent}


def test_typing_reaches_other_room_members(client, patient, doctor) -> None:
    room = conversation_id(patient.id, doctor.id)
    with client.websocket_connect(WS_URL) as doctor_ws, client.websocket_connect(WS_URL) as patient_ws:
        _authenticate(doctor_ws, doctor)
        _authenticate(patient_ws, patient)
        for ws in (doctor_ws, patient_ws):
            ws.send_json({"event": "join-conversation", "data": {"conversation_id": room}})
            _flush(ws)

        patient_ws.send_json(
            {
                "event": "typing",
                "data": {"conversation_id": room, "user_id": doctor.id, "is_typing": True},
            }
        )

        assert doctor_ws.receive_json() == {
            "event": "user-typing",
            "data": {"user_id": patient.id, "is_typing": True},
        }


def test_leave_removes_room_membership(client, fanout, patient, doctor) -> None:
    room = conversation_id(patient.id, doctor.id)
    with client.websocket_connect(WS_URL) as ws:
        _authenticate(ws, doctor)
        ws.send_json({"event": "join-conversation", "data": room})
        ws.send_json({"event": "leave-conversation", "data": room})
        _flush(ws)
        assert fanout.room_members(room) == []
