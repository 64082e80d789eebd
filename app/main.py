"""Entry point for the FastAPI backend-for-frontend."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any

import httpx
from fastapi import FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from .config import Settings, settings
from .database import Database
from .errors import FilmRateError
from .models import RecordId, Review, StoreModel
from .session import LocalStorage, SessionStore
from .services.accounts import AccountService, AdminService
from .services.catalog import CatalogCache
from .services.projector import FilmBrowser, FilmView
from .services.remote_store import RemoteStoreClient
from .services.reviews import ReviewAggregator
from .services.watchlist import WatchlistReconciler

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Components wired around one session and one HTTP client."""

    session: SessionStore
    store: RemoteStoreClient
    catalog: CatalogCache
    reviews: ReviewAggregator
    watchlist: WatchlistReconciler
    browser: FilmBrowser
    accounts: AccountService
    admin: AdminService


def build_services(
    app_settings: Settings,
    session: SessionStore,
    http_client: httpx.AsyncClient,
) -> AppServices:
    store = RemoteStoreClient(session, http_client)
    catalog = CatalogCache(app_settings, store, session)
    watchlist = WatchlistReconciler(store, session)
    return AppServices(
        session=session,
        store=store,
        catalog=catalog,
        reviews=ReviewAggregator(store, session),
        watchlist=watchlist,
        browser=FilmBrowser(catalog, watchlist, session),
        accounts=AccountService(store, session),
        admin=AdminService(store, session),
    )


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=settings.api_base,
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=10.0),
            headers={"Content-Type": "application/json"},
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    # The stored identity is resolved before any other component exists.
    session = SessionStore(
        LocalStorage(database.session_factory), settings.session_namespace
    )
    await session.open()

    fastapi_app.state.services = build_services(settings, session, http_client)
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Film catalog, reviews and personal lists",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_services(fastapi_app: FastAPI) -> AppServices:
    services = getattr(fastapi_app.state, "services", None)
    if not isinstance(services, AppServices):
        raise RuntimeError("Services not initialised")
    return services


class Credentials(BaseModel):
    email: str
    password: str
    admin_key: str | None = Field(
        default=None, validation_alias=AliasChoices("adminKey", "admin_key")
    )


class StatusChange(BaseModel):
    status: str


class ReviewSubmission(BaseModel):
    rating: int
    comment: str | None = None


class ReviewEdit(BaseModel):
    film_id: RecordId = Field(validation_alias=AliasChoices("filmId", "film_id"))
    rating: int | None = None
    comment: str | None = None


class RoleChange(BaseModel):
    role: str


def _record_id(value: str | int) -> RecordId:
    """Path ids arrive as text; numeric ids go back to the store as numbers."""

    if isinstance(value, str) and value.isdigit():
        return int(value)
    return value


def _dump(model: StoreModel | None) -> dict[str, Any] | None:
    if model is None:
        return None
    return model.model_dump(mode="json", by_alias=True)


def _view_payload(view: FilmView) -> dict[str, Any]:
    return {
        "filter": view.filter,
        "header": view.header,
        "films": [_dump(film) for film in view.films],
        "emptyMessage": view.empty_message,
        "requiresSignIn": view.requires_sign_in,
        "error": view.error,
    }


def _review_payload(review: Review, reviews: ReviewAggregator) -> dict[str, Any]:
    payload = _dump(review) or {}
    payload["author"] = review.author_label()
    payload["stars"] = reviews.star_glyphs(review.rating)
    return payload


def _rating_summary(film_id: RecordId, reviews: ReviewAggregator) -> dict[str, Any]:
    average = reviews.average_rating(film_id)
    return {
        "averageRating": average,
        "reviewCount": reviews.review_count(film_id),
        "stars": reviews.star_glyphs(float(average)),
        "state": reviews.state(film_id),
        "notices": reviews.notices(film_id),
    }


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(FilmRateError)
    async def _film_rate_error(_: Request, exc: FilmRateError) -> JSONResponse:
        return JSONResponse(
            {"message": exc.message, "error": type(exc).__name__},
            status_code=exc.http_status,
        )

    @fastapi_app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            {"message": "Something went wrong. Please try again.", "error": "InternalError"},
            status_code=500,
        )

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    # Session

    @fastapi_app.get("/session")
    async def current_session() -> dict[str, Any]:
        services = get_services(fastapi_app)
        await services.session.wait_resolved()
        return {
            "user": _dump(services.session.current_user()),
            "isAdmin": services.session.is_admin(),
        }

    @fastapi_app.post("/session/register", status_code=201)
    async def register(credentials: Credentials) -> dict[str, Any]:
        services = get_services(fastapi_app)
        identity = await services.accounts.register(
            credentials.email, credentials.password, credentials.admin_key
        )
        services.browser.invalidate()
        return {"user": _dump(identity)}

    @fastapi_app.post("/session/login")
    async def login(credentials: Credentials) -> dict[str, Any]:
        services = get_services(fastapi_app)
        identity = await services.accounts.login(
            credentials.email, credentials.password
        )
        services.browser.invalidate()
        return {"user": _dump(identity)}

    @fastapi_app.post("/session/logout", status_code=204)
    async def logout() -> Response:
        services = get_services(fastapi_app)
        await services.accounts.logout()
        services.browser.invalidate()
        return Response(status_code=204)

    # Films

    @fastapi_app.get("/films")
    async def list_films(
        filter_key: str = Query(default="all", alias="filter"),
        refresh: bool = False,
    ) -> dict[str, Any]:
        services = get_services(fastapi_app)
        if refresh:
            await services.catalog.refresh()
        view = await services.browser.view(filter_key)
        return _view_payload(view)

    @fastapi_app.get("/films/{film_id}")
    async def film_card(film_id: str) -> dict[str, Any]:
        services = get_services(fastapi_app)
        key = _record_id(film_id)
        film = await services.catalog.get(key)
        await services.reviews.fetch_once(key)
        identity = services.session.current_user()
        status = None
        if identity is not None:
            status = await services.watchlist.track(identity.id, key)
        return {
            "film": _dump(film),
            "rating": _rating_summary(key, services.reviews),
            "watchlist": {
                "status": status,
                "busy": identity is not None
                and services.watchlist.busy(identity.id, key),
            },
        }

    @fastapi_app.post("/films", status_code=201)
    async def create_film(payload: dict[str, Any]) -> dict[str, Any]:
        services = get_services(fastapi_app)
        film = await services.catalog.create_film(payload)
        return {"film": _dump(film)}

    @fastapi_app.put("/films/{film_id}")
    async def update_film(film_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        services = get_services(fastapi_app)
        film = await services.catalog.update_film(_record_id(film_id), payload)
        return {"film": _dump(film)}

    @fastapi_app.delete("/films/{film_id}", status_code=204)
    async def delete_film(film_id: str) -> Response:
        services = get_services(fastapi_app)
        await services.catalog.delete_film(_record_id(film_id))
        return Response(status_code=204)

    # Reviews

    @fastapi_app.get("/films/{film_id}/reviews")
    async def film_reviews(film_id: str, refresh: bool = False) -> dict[str, Any]:
        services = get_services(fastapi_app)
        key = _record_id(film_id)
        if refresh:
            reviews = await services.reviews.refresh(key)
        else:
            reviews = await services.reviews.fetch_once(key)
        return {
            **_rating_summary(key, services.reviews),
            "reviews": [_review_payload(review, services.reviews) for review in reviews],
        }

    @fastapi_app.post("/films/{film_id}/reviews", status_code=201)
    async def submit_review(film_id: str, submission: ReviewSubmission) -> dict[str, Any]:
        services = get_services(fastapi_app)
        identity = services.session.require_user()
        key = _record_id(film_id)
        review = await services.reviews.submit(
            key,
            identity.id,
            submission.rating,
            submission.comment,
            on_update=services.catalog.refresh,
        )
        return {
            "review": _dump(review),
            "rating": _rating_summary(key, services.reviews),
        }

    @fastapi_app.put("/reviews/{review_id}")
    async def update_review(review_id: str, edit: ReviewEdit) -> dict[str, Any]:
        services = get_services(fastapi_app)
        film_key = _record_id(edit.film_id)
        review = await services.reviews.update_review(
            _record_id(review_id),
            film_key,
            rating=edit.rating,
            comment=edit.comment,
        )
        return {
            "review": _dump(review),
            "rating": _rating_summary(film_key, services.reviews),
        }

    @fastapi_app.delete("/reviews/{review_id}", status_code=204)
    async def delete_review(review_id: str, film_id: str) -> Response:
        services = get_services(fastapi_app)
        await services.reviews.delete_review(
            _record_id(review_id), _record_id(film_id)
        )
        return Response(status_code=204)

    @fastapi_app.get("/users/{user_id}/reviews")
    async def user_reviews(user_id: str) -> dict[str, Any]:
        services = get_services(fastapi_app)
        reviews = await services.reviews.reviews_by_user(_record_id(user_id))
        return {
            "reviews": [_review_payload(review, services.reviews) for review in reviews]
        }

    # Watchlist

    @fastapi_app.get("/films/{film_id}/watchlist")
    async def watchlist_status(film_id: str) -> dict[str, Any]:
        services = get_services(fastapi_app)
        identity = services.session.require_user()
        key = _record_id(film_id)
        status = await services.watchlist.status(identity.id, key)
        return {"status": status, "busy": services.watchlist.busy(identity.id, key)}

    @fastapi_app.put("/films/{film_id}/watchlist")
    async def set_watchlist_status(film_id: str, change: StatusChange) -> dict[str, Any]:
        services = get_services(fastapi_app)
        identity = services.session.require_user()
        status = await services.watchlist.set_status(
            identity.id, _record_id(film_id), change.status
        )
        return {"status": status}

    @fastapi_app.post("/films/{film_id}/watchlist/confirm-removal")
    async def confirm_removal(film_id: str) -> dict[str, str]:
        services = get_services(fastapi_app)
        identity = services.session.require_user()
        confirmation = services.watchlist.confirm_removal(
            identity.id, _record_id(film_id)
        )
        return {"confirmation": confirmation.token}

    @fastapi_app.delete("/films/{film_id}/watchlist", status_code=204)
    async def clear_watchlist_status(
        film_id: str, confirmation: str | None = None
    ) -> Response:
        services = get_services(fastapi_app)
        identity = services.session.require_user()
        await services.watchlist.clear_status(
            identity.id, _record_id(film_id), confirmation
        )
        return Response(status_code=204)

    # Administration

    @fastapi_app.get("/admin/users")
    async def list_users() -> dict[str, Any]:
        services = get_services(fastapi_app)
        users = await services.admin.list_users()
        stats = services.admin.user_stats(users)
        return {
            "users": [_dump(user) for user in users],
            "stats": {"total": stats.total, "admins": stats.admins, "users": stats.users},
        }

    @fastapi_app.put("/admin/users/{user_id}/role")
    async def change_role(user_id: str, change: RoleChange) -> dict[str, Any]:
        services = get_services(fastapi_app)
        role = await services.admin.set_role(_record_id(user_id), change.role)
        return {"id": user_id, "role": role}

    @fastapi_app.delete("/admin/users/{user_id}", status_code=204)
    async def delete_user(user_id: str) -> Response:
        services = get_services(fastapi_app)
        await services.admin.delete_user(_record_id(user_id))
        return Response(status_code=204)


app = create_app()
