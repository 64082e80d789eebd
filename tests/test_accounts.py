"""Account and administration service tests."""

from __future__ import annotations

import pytest

from app.errors import Unauthenticated, Unauthorized, ValidationFailed
from app.services.accounts import AdminService

from conftest import ADMIN_KEY


@pytest.mark.anyio("asyncio")
async def test_login_records_identity(services, storage) -> None:
    await services.session.open()

    identity = await services.accounts.login("viewer@example.com", "pw")

    assert identity.id == 1
    assert services.session.current_user() == identity
    assert storage.values["filmrate_user"]["email"] == "viewer@example.com"


@pytest.mark.anyio("asyncio")
async def test_login_with_bad_password(services) -> None:
    await services.session.open()

    with pytest.raises(Unauthenticated, match="Invalid email or password"):
        await services.accounts.login("viewer@example.com", "nope")
    assert services.session.current_user() is None


@pytest.mark.anyio("asyncio")
async def test_register_with_admin_key(services) -> None:
    await services.session.open()

    identity = await services.accounts.register("boss@example.com", "pw", ADMIN_KEY)

    assert identity.role == "admin"
    assert services.session.is_admin()


@pytest.mark.anyio("asyncio")
async def test_register_requires_credentials(services, store) -> None:
    await services.session.open()

    with pytest.raises(ValidationFailed):
        await services.accounts.register("  ", "pw")
    assert store.requests == []


@pytest.mark.anyio("asyncio")
async def test_logout_clears_identity(services, storage, sign_in) -> None:
    await sign_in(1)

    await services.accounts.logout()

    assert services.session.current_user() is None
    assert storage.values == {}


@pytest.mark.anyio("asyncio")
async def test_admin_cannot_delete_self(services, store, sign_in) -> None:
    """Self-deletion is refused before anything is sent to the store."""

    await sign_in(2)

    with pytest.raises(Unauthorized):
        await services.admin.delete_user(2)
    with pytest.raises(Unauthorized):
        await services.admin.set_role("2", "user")
    assert store.requests == []


@pytest.mark.anyio("asyncio")
async def test_admin_manages_other_users(services, store, sign_in) -> None:
    await sign_in(2)
    users = await services.admin.list_users()
    viewer = next(user for user in users if user.id == 1)

    assert await services.admin.toggle_role(viewer) == "admin"
    await services.admin.delete_user(1)

    assert [user["id"] for user in store.users] == [2]


@pytest.mark.anyio("asyncio")
async def test_admin_rejects_unknown_role(services, sign_in) -> None:
    await sign_in(2)

    with pytest.raises(ValidationFailed):
        await services.admin.set_role(1, "owner")


@pytest.mark.anyio("asyncio")
async def test_regular_user_cannot_list_users(services, store, sign_in) -> None:
    await sign_in(1)

    with pytest.raises(Unauthorized):
        await services.admin.list_users()
    assert store.requests == []


@pytest.mark.anyio("asyncio")
async def test_user_stats(services, sign_in) -> None:
    await sign_in(2)
    users = await services.admin.list_users()

    stats = AdminService.user_stats(users)

    assert (stats.total, stats.admins, stats.users) == (2, 1, 1)
