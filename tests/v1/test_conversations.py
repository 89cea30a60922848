# tests/v1/test_conversations.py
"""Tests for the derived conversation index endpoint."""

from fastapi import status


def _conversations(client, headers):
    response = client.get("/api/v1/messages/conversations", headers=headers)
    assert response.status_code == status.HTTP_200_OK
    return response.json()["conversations"]


def test_empty_conversation_list(client, patient, patient_headers) -> None:
    assert _conversations(client, patient_headers) == []


def test_first_message_creates_entries_for_both_sides(
    client, send, patient, doctor, patient_headers, doctor_headers
) -> None:
    response = send(patient_headers, doctor.id, "Hello Dr. B")
    assert response.status_code == status.HTTP_201_CREATED

    patient_view = _conversations(client, patient_headers)
    doctor_view = _conversations(client, doctor_headers)

    assert len(patient_view) == 1
    assert patient_view[0]["user"]["id"] == doctor.id
    assert patient_view[0]["unread_count"] == 0
    assert patient_view[0]["last_message"]["content"] == "Hello Dr. B"

    assert len(doctor_view) == 1
    assert doctor_view[0]["user"]["id"] == patient.id
    assert doctor_view[0]["unread_count"] == 1
    assert doctor_view[0]["id"] == patient_view[0]["id"]


def test_conversation_id_is_sorted_pair(client, send, patient, doctor, patient_headers) -> None:
    send(patient_headers, doctor.id)
    entry = _conversations(client, patient_headers)[0]
    assert entry["id"] == "-".join(sorted((patient.id, doctor.id)))


def test_doctor_counterparty_carries_specialty(client, send, doctor, patient_headers) -> None:
    send(patient_headers, doctor.id)
    entry = _conversations(client, patient_headers)[0]
    assert entry["user"]["role"] == "doctor"
    assert entry["user"]["specialty"] == "Cardiology"


def test_doctor_without_profile_gets_default_specialty(
    client, send, user_factory, patient_headers
) -> None:
    unprofiled = user_factory("Dr. New", "new@example.com", role="doctor")
    send(patient_headers, unprofiled.id)

    entry = _conversations(client, patient_headers)[0]
    assert entry["user"]["specialty"] == "General Medicine"


def test_patient_counterparty_has_no_specialty(client, send, patient, doctor_headers) -> None:
    send(doctor_headers, patient.id)
    entry = _conversations(client, doctor_headers)[0]
    assert entry["user"].get("specialty") is None


def test_entries_sorted_by_latest_activity(
    client, send, patient, doctor, other_patient, patient_headers, other_headers
) -> None:
    send(patient_headers, doctor.id, "to doctor")
    send(patient_headers, other_patient.id, "to chege")

    assert [e["user"]["id"] for e in _conversations(client, patient_headers)] == [
        other_patient.id,
        doctor.id,
    ]

    send(patient_headers, doctor.id, "doctor again")
    entries = _conversations(client, patient_headers)
    assert [e["user"]["id"] for e in entries] == [doctor.id, other_patient.id]
    assert entries[0]["last_message"]["content"] == "doctor again"


def test_unread_total_matches_sum_of_entries(
    client, send, patient, doctor, other_patient, patient_headers, doctor_headers, other_headers
) -> None:
    send(doctor_headers, patient.id, "d1")
    send(doctor_headers, patient.id, "d2")
    send(other_headers, patient.id, "o1")
    send(patient_headers, doctor.id, "reply")

    entries = _conversations(client, patient_headers)
    total = client.get("/api/v1/messages/unread/count", headers=patient_headers).json()[
        "unread_count"
    ]
    assert total == sum(entry["unread_count"] for entry in entries) == 3


def test_mark_read_clears_entry_unread(client, send, patient, doctor, patient_headers, doctor_headers) -> None:
    send(patient_headers, doctor.id, "hello")
    client.put(f"/api/v1/messages/read/{patient.id}", headers=doctor_headers)

    assert _conversations(client, doctor_headers)[0]["unread_count"] == 0
