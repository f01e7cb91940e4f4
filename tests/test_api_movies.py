"""
tests/test_api_movies.py -- Ownership guard on /api/v1/movies.

USER A creates a movie; USER B may read it but not modify it; an ADMIN may
modify or delete anything. The users authenticate with Bearer headers so one
TestClient can act as several of them; writes still echo the client's CSRF
cookie like any other caller.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tests.helpers import as_user, csrf_headers, login, register


@pytest.fixture
def tokens(api_client: TestClient, user_store) -> dict[str, str]:
    """Register owner, other and admin; return their bearer tokens."""
    issued = {
        "owner": register(api_client, "owner@example.com").json()["token"],
        "other": register(api_client, "other@example.com").json()["token"],
        "admin": register(api_client, "admin@example.com").json()["token"],
    }
    user_store.update_user(user_store.get_by_email("admin@example.com").id, role="ADMIN")
    api_client.cookies.clear()
    return issued


@pytest.fixture
def movie_id(api_client: TestClient, tokens) -> int:
    resp = api_client.post("/api/v1/movies", json={"title": "Heat"}, headers=as_user(api_client, tokens["owner"]))
    assert resp.status_code == 201
    return resp.json()["data"]["movie"]["id"]


class TestCreateAndRead:
    def test_creator_becomes_owner(self, api_client: TestClient, tokens, user_store) -> None:
        """The authenticated caller is recorded as owner; the title is trimmed."""
        resp = api_client.post(
            "/api/v1/movies",
            json={"title": "  Ronin ", "release_date": "1998-09-25"},
            headers=as_user(api_client, tokens["owner"]),
        )
        movie = resp.json()["data"]["movie"]
        assert movie["title"] == "Ronin"
        assert movie["release_date"] == "1998-09-25"
        assert movie["owner_id"] == user_store.get_by_email("owner@example.com").id

    def test_anyone_can_read(self, api_client: TestClient, movie_id) -> None:
        """GET /movies/{id} needs no session."""
        resp = api_client.get(f"/api/v1/movies/{movie_id}")
        assert resp.status_code == 200
        assert resp.json()["data"]["movie"]["title"] == "Heat"

    def test_missing_movie_is_404(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/movies/999")
        assert resp.status_code == 404
        assert resp.json() == {"status": "fail", "message": "No movie found with that ID."}

    def test_empty_title_is_400(self, api_client: TestClient, tokens) -> None:
        """A whitespace-only or empty title fails validation."""
        resp = api_client.post("/api/v1/movies", json={"title": ""}, headers=as_user(api_client, tokens["owner"]))
        assert resp.status_code == 400
        assert resp.json()["status"] == "fail"

    @pytest.mark.parametrize("release_date", ["2024-99-99", "2023-02-30", "25/12/2024"])
    def test_impossible_release_date_is_400(self, api_client: TestClient, tokens, release_date) -> None:
        """Release dates must be real calendar dates, not just the right shape."""
        resp = api_client.post(
            "/api/v1/movies",
            json={"title": "Brazil", "release_date": release_date},
            headers=as_user(api_client, tokens["owner"]),
        )
        assert resp.status_code == 400
        assert resp.json()["message"].startswith("release_date:")


class TestOwnership:
    def test_owner_can_update(self, api_client: TestClient, tokens, movie_id) -> None:
        """The owner may edit; updated_at is stamped."""
        resp = api_client.patch(
            f"/api/v1/movies/{movie_id}", json={"title": "Heat (1995)"}, headers=as_user(api_client, tokens["owner"])
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["movie"]["title"] == "Heat (1995)"
        assert resp.json()["data"]["movie"]["updated_at"]

    def test_other_user_cannot_update(self, api_client: TestClient, tokens, movie_id) -> None:
        """A non-owner USER is refused with 403."""
        resp = api_client.patch(
            f"/api/v1/movies/{movie_id}", json={"title": "Mine now"}, headers=as_user(api_client, tokens["other"])
        )
        assert resp.status_code == 403
        assert resp.json() == {"status": "fail", "message": "You do not have permission to modify this resource."}

    def test_other_user_cannot_delete(self, api_client: TestClient, tokens, movie_id) -> None:
        """A refused delete leaves the movie in place."""
        resp = api_client.delete(f"/api/v1/movies/{movie_id}", headers=as_user(api_client, tokens["other"]))
        assert resp.status_code == 403
        assert api_client.get(f"/api/v1/movies/{movie_id}").status_code == 200

    def test_admin_can_update_and_delete(self, api_client: TestClient, tokens, movie_id) -> None:
        """ADMIN bypasses ownership for both update and delete."""
        patched = api_client.patch(
            f"/api/v1/movies/{movie_id}",
            json={"overview": "Cops and robbers."},
            headers=as_user(api_client, tokens["admin"]),
        )
        assert patched.status_code == 200
        assert patched.json()["data"]["movie"]["overview"] == "Cops and robbers."

        deleted = api_client.delete(f"/api/v1/movies/{movie_id}", headers=as_user(api_client, tokens["admin"]))
        assert deleted.status_code == 204
        assert api_client.get(f"/api/v1/movies/{movie_id}").status_code == 404

    def test_owner_can_delete_with_cookie_session(self, api_client: TestClient, movie_id) -> None:
        """Browser flow: session cookie plus the CSRF header."""
        login(api_client, "owner@example.com")
        resp = api_client.delete(f"/api/v1/movies/{movie_id}", headers=csrf_headers(api_client))
        assert resp.status_code == 204

    def test_unauthenticated_write_is_401(self, api_client: TestClient, movie_id) -> None:
        """Passing CSRF does not authenticate anyone."""
        resp = api_client.patch(f"/api/v1/movies/{movie_id}", json={"title": "x"}, headers=csrf_headers(api_client))
        assert resp.status_code == 401

    def test_write_to_missing_movie_is_404(self, api_client: TestClient, tokens) -> None:
        resp = api_client.patch("/api/v1/movies/999", json={"title": "x"}, headers=as_user(api_client, tokens["admin"]))
        assert resp.status_code == 404

    def test_empty_patch_is_400(self, api_client: TestClient, tokens, movie_id) -> None:
        resp = api_client.patch(f"/api/v1/movies/{movie_id}", json={}, headers=as_user(api_client, tokens["owner"]))
        assert resp.status_code == 400
        assert resp.json()["message"] == "No fields to update."

    def test_patch_rejects_impossible_release_date(self, api_client: TestClient, tokens, movie_id) -> None:
        resp = api_client.patch(
            f"/api/v1/movies/{movie_id}",
            json={"release_date": "1995-13-01"},
            headers=as_user(api_client, tokens["owner"]),
        )
        assert resp.status_code == 400
