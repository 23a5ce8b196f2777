from datetime import timedelta

import pytest

from registry_core.auth.tokens import Authenticator, extract_bearer
from registry_core.errors import UnauthorizedError


@pytest.fixture
def authenticator(store, clock):
    return Authenticator(store, clock=clock)


def test_valid_token_resolves_principal(authenticator, store, user, clock):
    plaintext, token = store.create_token(user_id=user.id, label="ci", scopes=["publish:pkg:foo"])

    principal = authenticator.authenticate(f"Bearer {plaintext}")

    assert principal.user_id == user.id
    assert principal.scopes == frozenset({"publish:pkg:foo"})
    assert not principal.is_admin
    assert store.get_token_by_hash(token.token_hash).last_used_at == clock()


@pytest.mark.parametrize("header", [None, "", "   ", "Basic dXNlcjpwYXNz", "Bearer ", "Bearer    "])
def test_malformed_headers(header):
    with pytest.raises(UnauthorizedError):
        extract_bearer(header)


def test_bearer_prefix_is_case_insensitive():
    assert extract_bearer("bearer abc") == "abc"
    assert extract_bearer("  BEARER abc  ") == "abc"


def test_unknown_token(authenticator):
    with pytest.raises(UnauthorizedError):
        authenticator.authenticate("Bearer not-a-real-token")


def test_expired_token(authenticator, store, user, clock):
    plaintext, _ = store.create_token(
        user_id=user.id,
        label="short",
        scopes=["admin"],
        expires_at=clock() + timedelta(minutes=5),
    )
    assert authenticator.authenticate(f"Bearer {plaintext}").is_admin

    clock.advance(minutes=5)
    with pytest.raises(UnauthorizedError):
        authenticator.authenticate(f"Bearer {plaintext}")


def test_inactive_user(authenticator, store, user):
    plaintext, _ = store.create_token(user_id=user.id, label="ci", scopes=["read:all"])
    store.set_user_active(user.id, False)

    with pytest.raises(UnauthorizedError):
        authenticator.authenticate(f"Bearer {plaintext}")


def test_deleted_token(authenticator, store, user):
    plaintext, token = store.create_token(user_id=user.id, label="ci", scopes=["read:all"])
    store.delete_token(token.token_hash)

    with pytest.raises(UnauthorizedError):
        authenticator.authenticate(f"Bearer {plaintext}")
