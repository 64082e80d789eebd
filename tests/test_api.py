"""HTTP surface tests."""

from __future__ import annotations

import asyncio

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.main import AppServices, register_routes


@pytest.fixture
def client(services: AppServices):
    app = FastAPI()
    register_routes(app)
    asyncio.run(services.session.open())
    app.state.services = services

    with TestClient(app) as test_client:
        yield test_client


def _login(client: TestClient, email: str = "viewer@example.com") -> None:
    response = client.post("/session/login", json={"email": email, "password": "pw"})
    assert response.status_code == 200


def test_healthcheck(client: TestClient) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}


def test_session_lifecycle(client: TestClient) -> None:
    assert client.get("/session").json() == {"user": None, "isAdmin": False}

    _login(client, "admin@example.com")
    payload = client.get("/session").json()
    assert payload["user"]["email"] == "admin@example.com"
    assert payload["isAdmin"] is True

    assert client.post("/session/logout").status_code == 204
    assert client.get("/session").json()["user"] is None


def test_bad_login_maps_to_401(client: TestClient) -> None:
    response = client.post(
        "/session/login", json={"email": "viewer@example.com", "password": "wrong"}
    )

    assert response.status_code == 401
    assert response.json() == {
        "message": "Invalid email or password",
        "error": "Unauthenticated",
    }


def test_anonymous_list_filter_asks_for_sign_in(client: TestClient) -> None:
    payload = client.get("/films", params={"filter": "watched"}).json()

    assert payload["requiresSignIn"] is True
    assert payload["emptyMessage"] == "Please sign in to see your lists."
    assert payload["films"] == []


def test_all_films(client: TestClient) -> None:
    payload = client.get("/films").json()

    assert payload["header"] == "All Films"
    assert [film["title"] for film in payload["films"]] == ["Stalker", "Persona", "Ran"]


def test_watchlist_flow(client: TestClient, store) -> None:
    """Add a film to a list, see it filtered, then remove it with confirmation."""

    _login(client)

    response = client.put("/films/2/watchlist", json={"status": "favorite"})
    assert response.json() == {"status": "favorite"}

    favourites = client.get("/films", params={"filter": "favorite"}).json()
    assert [film["id"] for film in favourites["films"]] == [2]

    unconfirmed = client.delete("/films/2/watchlist")
    assert unconfirmed.status_code == 428

    token = client.post("/films/2/watchlist/confirm-removal").json()["confirmation"]
    assert client.delete("/films/2/watchlist", params={"confirmation": token}).status_code == 204
    assert client.get("/films/2/watchlist").json() == {"status": None, "busy": False}
    assert store.watchlist == []


def test_film_card_includes_rating_and_status(client: TestClient, store) -> None:
    store.reviews.append({"id": 900, "filmId": 1, "userId": 2, "rating": 4})
    store.reviews.append({"id": 901, "filmId": 1, "userId": 3, "rating": 5})
    store.add_watchlist_row(1, 1, "watched")
    _login(client)

    payload = client.get("/films/1").json()

    assert payload["film"]["title"] == "Stalker"
    assert payload["rating"]["averageRating"] == "4.5"
    assert payload["rating"]["stars"] == "★★★★½"
    assert payload["rating"]["reviewCount"] == 2
    assert payload["watchlist"] == {"status": "watched", "busy": False}


def test_submit_review_updates_summary(client: TestClient) -> None:
    _login(client)

    response = client.post("/films/3/reviews", json={"rating": 4, "comment": "Epic"})

    assert response.status_code == 201
    assert response.json()["rating"]["averageRating"] == "4.0"

    reviews = client.get("/films/3/reviews").json()["reviews"]
    assert reviews[0]["author"] == "Anonymous"
    assert reviews[0]["stars"] == "★★★★☆"


def test_invalid_review_rating_rejected(client: TestClient) -> None:
    _login(client)

    response = client.post("/films/3/reviews", json={"rating": 9})

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationFailed"


def test_catalog_edits_require_admin(client: TestClient) -> None:
    film = {"title": "Cure", "director": "Kiyoshi Kurosawa", "releaseYear": 1997}

    assert client.post("/films", json=film).status_code == 401
    _login(client)
    assert client.post("/films", json=film).status_code == 403


def test_admin_user_management(client: TestClient, store) -> None:
    _login(client, "admin@example.com")

    payload = client.get("/admin/users").json()
    assert payload["stats"] == {"total": 2, "admins": 1, "users": 1}

    assert client.delete("/admin/users/2").status_code == 403
    assert client.put("/admin/users/1/role", json={"role": "admin"}).status_code == 200
    assert store.users[0]["role"] == "admin"
