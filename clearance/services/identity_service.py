from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from clearance.domain.errors import ForbiddenError, InvalidStateError, NotFoundError
from clearance.domain.models import (
    AuditAction,
    BootstrapAdminRequest,
    RegisterRequest,
    User,
    UserRole,
    now_utc,
)
from clearance.domain.permissions import permissions_for_role
from clearance.infra.audit import write_audit_log
from clearance.infra.auth import hash_password
from clearance.infra.db import open_session

logger = logging.getLogger(__name__)


class AuthError(Exception):
    pass


class IdentityService:
    def __init__(self, *, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory or open_session

    def _session(self) -> Session:
        return self._session_factory()

    @staticmethod
    def _normalize_email(email: str) -> str:
        return email.strip().lower()

    def register(self, payload: RegisterRequest) -> User:
        with self._session() as session:
            user = User(
                email=self._normalize_email(payload.email),
                full_name=payload.full_name,
                phone=payload.phone,
                password_hash=hash_password(payload.password),
                role=UserRole.PILOT,
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise InvalidStateError("email already registered") from exc
            session.refresh(user)
            return user

    def bootstrap_admin(self, payload: BootstrapAdminRequest) -> User:
        with self._session() as session:
            existing = session.exec(select(User).where(User.role == UserRole.ADMIN)).first()
            if existing is not None:
                raise InvalidStateError("admin already initialized")
            admin = User(
                email=self._normalize_email(payload.email),
                full_name=payload.full_name,
                password_hash=hash_password(payload.password),
                role=UserRole.ADMIN,
            )
            session.add(admin)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise InvalidStateError("email already registered") from exc
            session.refresh(admin)
            logger.info("bootstrap admin %s created", admin.id)
            return admin

    def login(self, email: str, password: str) -> tuple[User, list[str]]:
        with self._session() as session:
            user = session.exec(select(User).where(User.email == self._normalize_email(email))).first()
            if user is None:
                raise AuthError("invalid credentials")
            if not user.is_active:
                raise AuthError("user disabled")
            if user.password_hash != hash_password(password):
                raise AuthError("invalid credentials")
        return user, permissions_for_role(user.role)

    def get_user(self, user_id: str) -> User:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            return user

    def list_users(self, role: UserRole | None = None) -> list[User]:
        with self._session() as session:
            statement = select(User)
            if role is not None:
                statement = statement.where(User.role == role)
            return list(session.exec(statement.order_by(col(User.created_at))).all())

    def update_role(self, actor_id: str, user_id: str, role: UserRole) -> User:
        with self._session() as session:
            actor = session.get(User, actor_id)
            if actor is None or actor.role != UserRole.ADMIN:
                raise ForbiddenError("only admins can reassign roles")
            user = session.get(User, user_id)
            if user is None:
                raise NotFoundError("user not found")
            if user.id == actor.id and role != UserRole.ADMIN:
                raise InvalidStateError("admins cannot demote themselves")
            previous_role = user.role
            user.role = role
            user.updated_at = now_utc()
            session.add(user)
            write_audit_log(
                actor_id=actor.id,
                action=AuditAction.ROLE_UPDATE,
                entity_type="user",
                entity_id=user.id,
                description=f"User role updated to {role.value}",
                detail={"previous_role": previous_role.value, "new_role": role.value},
                session=session,
            )
            session.commit()
            session.refresh(user)
            logger.info("user %s role %s -> %s by %s", user.id, previous_role.value, role.value, actor.id)
            return user
