"""Tests for the system settings endpoints."""

from fastapi import status

API = "/api/v1/admin/settings"


def test_read_defaults(client, auth_headers, members) -> None:
    response = client.get(API, headers=auth_headers(members[0]))

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["voting_duration_days"] == 1
    assert body["min_votes_required"] == 3
    assert body["approval_threshold_percent"] == 60.0
    assert body["negative_ratings_threshold"] == 30.0


def test_admin_updates_and_window_is_normalised(client, auth_headers, admin) -> None:
    response = client.patch(
        API,
        json={
            "voting_duration": {"days": 0, "hours": 0, "minutes": 150},
            "min_votes_required": 5,
        },
        headers=auth_headers(admin),
    )

    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert (
        body["voting_duration_days"],
        body["voting_duration_hours"],
        body["voting_duration_minutes"],
    ) == (0, 2, 30)
    assert body["min_votes_required"] == 5
    # Untouched fields keep their values.
    assert body["approval_threshold_percent"] == 60.0

    again = client.get(API, headers=auth_headers(admin)).json()
    assert again["min_votes_required"] == 5


def test_members_cannot_update(client, auth_headers, members) -> None:
    response = client.patch(API, json={"min_votes_required": 1}, headers=auth_headers(members[0]))
    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["code"] == "not_eligible"


def test_out_of_range_values_are_rejected(client, auth_headers, admin) -> None:
    too_high = client.patch(
        API, json={"approval_threshold_percent": 150}, headers=auth_headers(admin)
    )
    negative = client.patch(API, json={"max_daily_ratings": -1}, headers=auth_headers(admin))

    assert too_high.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert negative.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_empty_voting_window_is_rejected(client, auth_headers, admin) -> None:
    response = client.patch(
        API,
        json={"voting_duration": {"days": 0, "hours": 0, "minutes": 0}},
        headers=auth_headers(admin),
    )

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert "longer than zero" in response.json()["detail"]
