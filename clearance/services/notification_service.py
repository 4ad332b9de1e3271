from __future__ import annotations

from collections.abc import Callable, Iterable

from sqlmodel import Session, col, select

from clearance.domain.errors import NotFoundError
from clearance.domain.models import Notification, now_utc
from clearance.domain.review_rules import NotificationDraft
from clearance.infra.db import open_session


class NotificationService:
    def __init__(self, *, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory or open_session

    def _session(self) -> Session:
        return self._session_factory()

    @staticmethod
    def _build(draft: NotificationDraft) -> Notification:
        return Notification(
            user_id=draft.user_id,
            type=draft.type,
            title=draft.title,
            message=draft.message,
            entity_type=draft.entity_type,
            entity_id=draft.entity_id,
        )

    def notify(self, draft: NotificationDraft) -> Notification:
        with self._session() as session:
            notification = self._build(draft)
            session.add(notification)
            session.commit()
            session.refresh(notification)
            return notification

    def notify_many(self, drafts: Iterable[NotificationDraft]) -> list[Notification]:
        with self._session() as session:
            rows = [self._build(draft) for draft in drafts]
            if not rows:
                return []
            session.add_all(rows)
            session.commit()
            for row in rows:
                session.refresh(row)
            return rows

    def list_for_user(self, user_id: str, *, unread_only: bool = False) -> list[Notification]:
        with self._session() as session:
            statement = select(Notification).where(Notification.user_id == user_id)
            if unread_only:
                statement = statement.where(Notification.is_read == False)  # noqa: E712
            statement = statement.order_by(col(Notification.created_at).desc())
            return list(session.exec(statement).all())

    def mark_read(self, user_id: str, notification_id: str) -> Notification:
        with self._session() as session:
            notification = session.get(Notification, notification_id)
            if notification is None or notification.user_id != user_id:
                raise NotFoundError("notification not found")
            if not notification.is_read:
                notification.is_read = True
                notification.read_at = now_utc()
                session.add(notification)
                session.commit()
                session.refresh(notification)
            return notification
