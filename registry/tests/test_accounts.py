import json
from datetime import timedelta

import pytest

from registry_core.auth.passwords import hash_password, verify_password
from registry_core.domain.models import SessionType
from registry_core.errors import ConflictError, ForbiddenError, InvalidError, NotFoundError, UnauthorizedError
from registry_core.services.accounts import AccountService


def _hash(password):
    return f"hashed::{password[::-1]}"


@pytest.fixture
def accounts(store, dispatcher):
    return AccountService(
        store,
        dispatcher,
        _hash,
        user_session_ttl=timedelta(hours=24),
        admin_session_ttl=timedelta(hours=8),
    )


@pytest.mark.asyncio
async def test_register_user_hashes_and_notifies(accounts, store, receiver, dispatcher):
    store.create_webhook(url="https://hooks.example.test/users", events=["user.registered"])

    user = await accounts.register_user("New@Example.test", "correct horse", name="New")
    await dispatcher.drain()

    assert user.email == "new@example.test"
    assert store.get_user(user.id).password_hash == _hash("correct horse")
    assert json.loads(receiver.requests[0].content)["data"] == {"userId": user.id, "email": "new@example.test"}
    assert store.list_activity(activity_type="user_registered").items[0].target_id == user.id


@pytest.mark.asyncio
async def test_registration_rules(accounts, store, user):
    with pytest.raises(InvalidError):
        await accounts.register_user("short@example.test", "1234567")
    with pytest.raises(ConflictError):
        await accounts.register_user(user.email, "long enough password")

    store.set_site_config("allow_registration", False)
    with pytest.raises(ForbiddenError):
        await accounts.register_user("late@example.test", "long enough password")


def test_user_session_lifetime_follows_site_config(accounts, store, user, clock):
    store.set_site_config("session_ttl_hours", 2)

    session = accounts.open_session(user.id)

    assert session.session_type is SessionType.USER
    assert session.expires_at == clock() + timedelta(hours=2)
    assert store.get_user(user.id).last_login_at == clock()


def test_admin_sessions_use_admin_ttl(accounts, clock):
    admin = accounts.create_admin_user("root", "administrator", must_change_password=True)

    session = accounts.open_session(admin.id, SessionType.ADMIN)

    assert admin.must_change_password
    assert session.expires_at == clock() + timedelta(hours=8)


def test_admin_usernames_are_unique(accounts):
    accounts.create_admin_user("root", "administrator")
    with pytest.raises(ConflictError):
        accounts.create_admin_user("root", "administrator")


def test_sessions_for_unknown_or_inactive_accounts(accounts, store, user):
    with pytest.raises(NotFoundError):
        accounts.open_session("ghost")
    with pytest.raises(NotFoundError):
        accounts.open_session(user.id, SessionType.ADMIN)

    store.set_user_active(user.id, False)
    with pytest.raises(NotFoundError):
        accounts.open_session(user.id)


def test_resolve_session_expires_lazily(accounts, store, user, clock):
    session = accounts.open_session(user.id)
    assert accounts.resolve_session(session.session_id) == session

    clock.advance(hours=25)
    assert accounts.resolve_session(session.session_id) is None
    assert store.get_user_session(session.session_id) is None


def test_close_session(accounts, user):
    session = accounts.open_session(user.id)
    assert accounts.close_session(session.session_id)
    assert accounts.resolve_session(session.session_id) is None
    assert not accounts.close_session(session.session_id)


@pytest.fixture
def bcrypt_accounts(store, dispatcher):
    return AccountService(store, dispatcher)


@pytest.mark.asyncio
async def test_login_with_bcrypt_hashes(bcrypt_accounts, store):
    user = await bcrypt_accounts.register_user("login@example.test", "s3cret-password")
    assert store.get_user(user.id).password_hash.startswith("$2")

    session = bcrypt_accounts.login("LOGIN@example.test", "s3cret-password")

    assert session.user_id == user.id
    assert bcrypt_accounts.resolve_session(session.session_id) == session


@pytest.mark.asyncio
async def test_failed_login_is_logged(bcrypt_accounts, store):
    user = await bcrypt_accounts.register_user("login@example.test", "s3cret-password")

    with pytest.raises(UnauthorizedError):
        bcrypt_accounts.login("login@example.test", "wrong-password", ip_address="10.0.0.7")
    with pytest.raises(UnauthorizedError):
        bcrypt_accounts.login("nobody@example.test", "s3cret-password")

    failures = store.list_activity(activity_type="login_failed").items
    assert {entry.target_id for entry in failures} == {user.id, None}
    assert {entry.actor_email for entry in failures} == {"login@example.test", "nobody@example.test"}


def test_admin_login(bcrypt_accounts, store):
    admin = bcrypt_accounts.create_admin_user("root", "administrator")

    session = bcrypt_accounts.admin_login("root", "administrator")
    assert session.session_type is SessionType.ADMIN
    assert session.user_id == admin.id

    with pytest.raises(UnauthorizedError):
        bcrypt_accounts.admin_login("root", "not-the-password")
    assert store.list_activity(activity_type="admin_login_failed").items[0].actor_username == "root"


def test_verify_password_rejects_malformed_hash():
    assert verify_password("anything", hash_password("anything"))
    assert not verify_password("anything", "not-a-bcrypt-hash")
