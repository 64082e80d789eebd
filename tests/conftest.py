"""Pytest configuration and test helpers."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import httpx  # noqa: E402
import pytest  # noqa: E402

from app.config import Settings  # noqa: E402
from app.main import AppServices, build_services  # noqa: E402
from app.session import SessionStore  # noqa: E402

ADMIN_KEY = "let-me-in"


class MemoryStorage:
    """In-memory stand-in for the database-backed local storage."""

    def __init__(self, initial: dict[str, dict[str, Any]] | None = None):
        self.values: dict[str, dict[str, Any]] = dict(initial or {})
        self.reads = 0

    async def get(self, key: str) -> dict[str, Any] | None:
        self.reads += 1
        return self.values.get(key)

    async def set(self, key: str, value: dict[str, Any]) -> None:
        self.values[key] = dict(value)

    async def remove(self, key: str) -> None:
        self.values.pop(key, None)


class FakeFilmStore:
    """Behaves like the film REST store, served through ``httpx.MockTransport``.

    ``enforce_unique`` controls whether a second watchlist add for the same
    pair is rejected with an "already exists" message or silently stored as
    a duplicate row. ``gates`` holds events that delay a route before it is
    handled; ``reply_gates`` delay the reply after the change is committed.
    """

    def __init__(self) -> None:
        self.films: list[dict[str, Any]] = [
            {"id": 1, "title": "Stalker", "director": "Andrei Tarkovsky", "releaseYear": 1979},
            {"id": 2, "title": "Persona", "director": "Ingmar Bergman", "releaseYear": 1966},
            {"id": 3, "title": "Ran", "director": "Akira Kurosawa", "releaseYear": 1985},
        ]
        self.users: list[dict[str, Any]] = [
            {"id": 1, "email": "viewer@example.com", "role": "user", "password": "pw"},
            {"id": 2, "email": "admin@example.com", "role": "admin", "password": "pw"},
        ]
        self.reviews: list[dict[str, Any]] = []
        self.watchlist: list[dict[str, Any]] = []
        self.requests: list[httpx.Request] = []
        self.failing: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}
        self.reply_gates: dict[str, asyncio.Event] = {}
        self.enforce_unique = True
        self.return_item_on_create = True
        self._next_id = 100

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler),
            base_url="https://store.example.com",
        )

    def calls(self, method: str, path_prefix: str = "") -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.method == method and request.url.path.startswith(path_prefix)
        ]

    def add_watchlist_row(self, user_id: int, film_id: int, status: str) -> dict[str, Any]:
        row = {"id": self._new_id(), "userId": user_id, "filmId": film_id, "status": status}
        self.watchlist.append(row)
        return row

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = f"{request.method} {request.url.path}"
        for prefix in self.failing:
            if route.startswith(prefix):
                return httpx.Response(503, json={"message": "Service unavailable"})
        for prefix, gate in list(self.gates.items()):
            if route.startswith(prefix):
                await gate.wait()
        body = _json(request)
        parts = [part for part in request.url.path.split("/") if part]
        method = request.method
        role = request.headers.get("X-User-Role")

        response = self._route(method, parts, body, role)
        for prefix, gate in list(self.reply_gates.items()):
            if route.startswith(prefix):
                await gate.wait()
        return response

    def _route(self, method, parts, body, role) -> httpx.Response:
        if parts[0] == "films":
            return self._films(method, parts, body, role)
        if parts[0] == "users":
            return self._users(method, parts, body)
        if parts[0] == "reviews":
            return self._reviews(method, parts, body)
        if parts[0] == "watchlist":
            return self._watchlist(method, parts, body)
        return httpx.Response(404, json={"message": "Route not found"})

    def _films(self, method, parts, body, role) -> httpx.Response:
        if method == "GET" and len(parts) == 1:
            return httpx.Response(200, json=self.films)
        if method != "GET" and role != "admin":
            return httpx.Response(403, json={"message": "Admin access required"})
        if method == "POST":
            film = {"id": self._new_id(), **body}
            self.films.append(film)
            return httpx.Response(201, json={"message": "Film created", "film": film})
        film = self._find(self.films, int(parts[1]))
        if film is None:
            return httpx.Response(404, json={"message": "Film not found"})
        if method == "GET":
            return httpx.Response(200, json=film)
        if method == "PUT":
            film.update(body)
            return httpx.Response(200, json={"message": "Film updated", "film": film})
        self.films.remove(film)
        return httpx.Response(200, json={"message": "Film deleted"})

    def _users(self, method, parts, body) -> httpx.Response:
        if method == "POST" and parts[1] == "register":
            if any(user["email"] == body["email"] for user in self.users):
                return httpx.Response(400, json={"message": "Email is already registered"})
            role = "admin" if body.get("adminKey") == ADMIN_KEY else "user"
            user = {"id": self._new_id(), "email": body["email"], "role": role, "password": body["password"]}
            self.users.append(user)
            return httpx.Response(201, json={"message": "Registered", "user": _public(user)})
        if method == "POST" and parts[1] == "login":
            for user in self.users:
                if user["email"] == body["email"] and user["password"] == body["password"]:
                    return httpx.Response(200, json={"message": "Welcome", "user": _public(user)})
            return httpx.Response(401, json={"message": "Invalid email or password"})
        if method == "GET":
            return httpx.Response(200, json=[_public(user) for user in self.users])
        user = self._find(self.users, int(parts[1]))
        if user is None:
            return httpx.Response(404, json={"message": "User not found"})
        if method == "PUT":
            user["role"] = body["role"]
            return httpx.Response(200, json={"message": "Role updated"})
        self.users.remove(user)
        return httpx.Response(200, json={"message": "User deleted"})

    def _reviews(self, method, parts, body) -> httpx.Response:
        if method == "POST":
            if not 1 <= int(body.get("rating", 0)) <= 5:
                return httpx.Response(400, json={"message": "Rating must be between 1 and 5"})
            review = {"id": self._new_id(), "createdAt": "2024-05-01T12:00:00Z", **body}
            self.reviews.append(review)
            return httpx.Response(201, json={"message": "Review created", "review": review})
        if method == "GET" and parts[1] == "film":
            film_id = int(parts[2])
            return httpx.Response(200, json=[r for r in self.reviews if r["filmId"] == film_id])
        if method == "GET" and parts[1] == "user":
            user_id = int(parts[2])
            return httpx.Response(200, json=[r for r in self.reviews if r["userId"] == user_id])
        review = self._find(self.reviews, int(parts[1]))
        if review is None:
            return httpx.Response(404, json={"message": "Review not found"})
        if method == "PUT":
            review.update(body)
            return httpx.Response(200, json={"message": "Review updated", "review": review})
        self.reviews.remove(review)
        return httpx.Response(200, json={"message": "Review deleted"})

    def _watchlist(self, method, parts, body) -> httpx.Response:
        if method == "POST":
            existing = [
                row
                for row in self.watchlist
                if row["userId"] == body["userId"] and row["filmId"] == body["filmId"]
            ]
            if existing and self.enforce_unique:
                return httpx.Response(400, json={"message": "Film already exists in watchlist"})
            row = self.add_watchlist_row(body["userId"], body["filmId"], body["status"])
            if not self.return_item_on_create:
                return httpx.Response(201, json={"message": "Added"})
            return httpx.Response(201, json={"message": "Added", "item": row})
        if method == "GET" and len(parts) == 5:
            user_id, film_id = int(parts[2]), int(parts[4])
            for row in self.watchlist:
                if row["userId"] == user_id and row["filmId"] == film_id:
                    return httpx.Response(200, json={"status": row["status"]})
            return httpx.Response(200, json={"status": None})
        if method == "GET":
            user_id = int(parts[2])
            return httpx.Response(200, json=[r for r in self.watchlist if r["userId"] == user_id])
        row = self._find(self.watchlist, int(parts[1]))
        if row is None:
            return httpx.Response(404, json={"message": "Watchlist item not found"})
        if method == "PUT":
            row["status"] = body["status"]
            return httpx.Response(200, json={"message": "Updated", "item": row})
        self.watchlist.remove(row)
        return httpx.Response(200, json={"message": "Removed"})

    @staticmethod
    def _find(rows: list[dict[str, Any]], record_id: int) -> dict[str, Any] | None:
        for row in rows:
            if row["id"] == record_id:
                return row
        return None

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id


def _json(request: httpx.Request) -> dict[str, Any]:
    if not request.content:
        return {}
    return json.loads(request.content)


def _public(user: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in user.items() if key != "password"}


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.fixture
def store() -> FakeFilmStore:
    return FakeFilmStore()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def services(store: FakeFilmStore, storage: MemoryStorage) -> AppServices:
    settings = Settings(_env_file=None)
    session = SessionStore(storage, settings.session_namespace)  # type: ignore[arg-type]
    return build_services(settings, session, store.client())


@pytest.fixture
def sign_in(services: AppServices, store: FakeFilmStore):
    """Return a coroutine that resolves the session and signs a user in."""

    async def _sign_in(user_id: int = 1):
        await services.session.open()
        user = FakeFilmStore._find(store.users, user_id)
        assert user is not None
        return await services.session.login(_public(user))

    return _sign_in
