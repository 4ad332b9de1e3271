from __future__ import annotations

from collections.abc import Callable
from typing import Any

from sqlmodel import Session

from clearance.domain.models import AuditAction, AuditLog
from clearance.domain.review_rules import AuditDraft
from clearance.infra.db import engine


def write_audit_log(
    *,
    actor_id: str | None,
    action: AuditAction,
    entity_type: str,
    entity_id: str,
    description: str,
    detail: dict[str, Any] | None = None,
    session: Session | None = None,
) -> AuditLog:
    log = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        description=description,
        detail=detail or {},
    )
    if session is not None:
        session.add(log)
        return log
    with Session(engine, expire_on_commit=False) as own_session:
        own_session.add(log)
        own_session.commit()
    return log


class AuditWriter:
    """Append-only sink for audit drafts derived from state transitions.

    Without a ``session_factory`` the writer commits on the process engine.
    """

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory

    def write(self, draft: AuditDraft, session: Session | None = None) -> AuditLog:
        if session is None and self._session_factory is not None:
            with self._session_factory() as own_session:
                log = self._write(draft, own_session)
                own_session.commit()
            return log
        return self._write(draft, session)

    def _write(self, draft: AuditDraft, session: Session | None) -> AuditLog:
        return write_audit_log(
            actor_id=draft.actor_id,
            action=draft.action,
            entity_type=draft.entity_type,
            entity_id=draft.entity_id,
            description=draft.description,
            detail=draft.detail,
            session=session,
        )
