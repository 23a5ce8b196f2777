"""User registration, admin accounts and web sessions."""

from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import timedelta
from typing import Callable, Optional

from ..auth.passwords import hash_password as default_hash_password
from ..auth.passwords import verify_password as default_verify_password
from ..domain.models import Actor, AdminUser, SessionType, User, UserSession
from ..errors import ForbiddenError, InvalidError, NotFoundError, UnauthorizedError
from ..store import MetadataStore
from .webhooks import WebhookDispatcher

LOGGER = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def _new_session_id() -> str:
    return secrets.token_urlsafe(32)


class AccountService:
    """Passwords are hashed with bcrypt unless the host supplies its own pair."""

    def __init__(
        self,
        store: MetadataStore,
        webhooks: WebhookDispatcher,
        hash_password: Callable[[str], str] = default_hash_password,
        *,
        verify_password: Callable[[str, str], bool] = default_verify_password,
        user_session_ttl: timedelta = timedelta(hours=24),
        admin_session_ttl: timedelta = timedelta(hours=8),
        session_id_factory: Callable[[], str] = _new_session_id,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._webhooks = webhooks
        self._hash_password = hash_password
        self._verify_password = verify_password
        self._user_session_ttl = user_session_ttl
        self._admin_session_ttl = admin_session_ttl
        self._session_id_factory = session_id_factory
        self._logger = logger or LOGGER

    def _check_password(self, password: str) -> None:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    def _create_user(self, email: str, password: str, name: Optional[str], ip_address: Optional[str]) -> User:
        setting = self._store.get_site_config("allow_registration")
        if setting is not None and not setting.bool_value:
            raise ForbiddenError("Registration is disabled")
        self._check_password(password)
        user = self._store.create_user(email=email, password_hash=self._hash_password(password), name=name)
        self._store.log_activity(
            activity_type="user_registered",
            actor=Actor(actor_type="user", actor_id=user.id, email=user.email, ip_address=ip_address),
            target_type="user",
            target_id=user.id,
        )
        return user

    async def register_user(
        self,
        email: str,
        password: str,
        name: Optional[str] = None,
        *,
        ip_address: Optional[str] = None,
    ) -> User:
        user = await asyncio.to_thread(self._create_user, email, password, name, ip_address)
        self._logger.info("Registered user %s", user.id)
        self._webhooks.on_user_registered(user_id=user.id, email=user.email)
        return user

    def create_admin_user(
        self,
        username: str,
        password: str,
        name: Optional[str] = None,
        *,
        must_change_password: bool = False,
    ) -> AdminUser:
        self._check_password(password)
        admin = self._store.create_admin_user(
            username=username,
            password_hash=self._hash_password(password),
            name=name,
            must_change_password=must_change_password,
        )
        self._store.log_activity(
            activity_type="admin_created",
            actor=Actor.system(),
            target_type="admin",
            target_id=admin.id,
            metadata={"username": admin.username},
        )
        return admin

    def _ttl_for(self, session_type: SessionType) -> timedelta:
        if session_type is SessionType.ADMIN:
            return self._admin_session_ttl
        setting = self._store.get_site_config("session_ttl_hours")
        if setting is not None:
            try:
                return timedelta(hours=setting.number_value)
            except ValueError:
                self._logger.warning("Ignoring invalid session_ttl_hours value %r", setting.value)
        return self._user_session_ttl

    def open_session(self, user_id: str, session_type: SessionType = SessionType.USER) -> UserSession:
        if session_type is SessionType.ADMIN:
            admin = self._store.get_admin_user(user_id)
            if admin is None or not admin.is_active:
                raise NotFoundError(f"Admin user not found: {user_id}")
        else:
            user = self._store.get_user(user_id)
            if user is None or not user.is_active:
                raise NotFoundError(f"User not found: {user_id}")
            self._store.touch_user_login(user_id)
        return self._store.create_user_session(
            session_id=self._session_id_factory(),
            user_id=user_id,
            session_type=session_type,
            ttl=self._ttl_for(session_type),
        )

    def resolve_session(self, session_id: str) -> Optional[UserSession]:
        """Return the live session, deleting it if it has expired."""

        session = self._store.get_user_session(session_id)
        if session is None:
            return None
        if session.is_expired(self._store.now()):
            self._store.delete_user_session(session_id)
            return None
        return session

    def login(self, email: str, password: str, *, ip_address: Optional[str] = None) -> UserSession:
        user = self._store.get_user_by_email(email)
        if (
            user is None
            or not user.is_active
            or not user.password_hash
            or not self._verify_password(password, user.password_hash)
        ):
            self._store.log_activity(
                activity_type="login_failed",
                actor=Actor(actor_type="user", email=email.strip().lower(), ip_address=ip_address),
                target_type="user",
                target_id=user.id if user else None,
            )
            raise UnauthorizedError("Invalid credentials")
        return self.open_session(user.id)

    def admin_login(self, username: str, password: str) -> UserSession:
        admin = self._store.get_admin_user_by_username(username)
        if admin is None or not admin.is_active or not self._verify_password(password, admin.password_hash):
            self._store.log_activity(
                activity_type="admin_login_failed",
                actor=Actor(actor_type="admin", username=username),
                target_type="admin",
                target_id=admin.id if admin else None,
            )
            raise UnauthorizedError("Invalid credentials")
        return self.open_session(admin.id, SessionType.ADMIN)

    def close_session(self, session_id: str) -> bool:
        return self._store.delete_user_session(session_id)


__all__ = ["AccountService"]
