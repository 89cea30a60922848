# tests/v1/test_users.py
"""Tests for the user directory endpoints."""

from fastapi import status

from tibabu_connect.models import DoctorProfile


def test_messaging_users_excludes_caller_and_sorts_by_name(
    client, patient, doctor, other_patient, patient_headers
) -> None:
    response = client.get("/api/v1/users/messaging", headers=patient_headers)

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    names = [user["name"] for user in body["users"]]
    assert names == sorted(names)
    assert patient.id not in {user["id"] for user in body["users"]}
    assert body["total"] == len(body["users"]) == 2


def test_messaging_users_decorates_verified_doctors(client, doctor, patient_headers) -> None:
    body = client.get(
        "/api/v1/users/messaging", params={"role": "doctor"}, headers=patient_headers
    ).json()

    assert [user["id"] for user in body["users"]] == [doctor.id]
    listed = body["users"][0]
    assert listed["specialty"] == "Cardiology"
    assert listed["consultation_fee"] == 2500.0
    assert listed["is_available"] is True
    assert listed["is_verified"] is True


def test_messaging_users_hides_unverified_doctors(
    client, db_session, user_factory, patient_headers
) -> None:
    pending = user_factory("Dr. Pending", "pending@example.com", role="doctor")
    db_session.add(
        DoctorProfile(
            user_id=pending.id,
            specialty="Dermatology",
            license_number="KMP-2002",
            is_verified=False,
        )
    )
    db_session.flush()

    body = client.get(
        "/api/v1/users/messaging", params={"role": "doctor"}, headers=patient_headers
    ).json()
    assert pending.id not in {user["id"] for user in body["users"]}


def test_messaging_users_rejects_unknown_role(client, patient_headers) -> None:
    response = client.get(
        "/api/v1/users/messaging", params={"role": "nurse"}, headers=patient_headers
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_get_public_user(client, doctor, patient_headers) -> None:
    response = client.get(f"/api/v1/users/{doctor.id}", headers=patient_headers)

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["id"] == doctor.id
    assert body["name"] == "Dr. Baraka Mwangi"
    assert body["role"] == "doctor"
    assert body["specialty"] == "Cardiology"


def test_get_unknown_user(client, patient_headers) -> None:
    response = client.get(f"/api/v1/users/{'f' * 32}", headers=patient_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND
