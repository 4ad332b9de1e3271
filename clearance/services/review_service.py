from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from clearance.domain.errors import ForbiddenError, NotFoundError, PersistenceError
from clearance.domain.models import (
    REVIEWABLE_MODELS,
    EntityType,
    Flight,
    PilotProfile,
    ReviewableEntity,
    ReviewResult,
    User,
    UserRole,
    dump_reviews,
    load_reviews,
    now_utc,
)
from clearance.domain.permissions import department_for_role
from clearance.domain.review_rules import (
    AuditDraft,
    NotificationDraft,
    apply_department_decision,
    derive_reapply_audit,
    derive_review_audit,
    derive_review_notification,
    guard_reapply,
    guard_review,
    parse_decision,
    parse_entity_type,
    resolve_department,
    reset_reviews,
)
from clearance.domain.state_machine import OverallStatus, ReviewStatus
from clearance.infra.audit import AuditWriter
from clearance.infra.db import open_session
from clearance.infra.events import event_bus
from clearance.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

OPEN_OVERALL_STATUSES = {OverallStatus.PENDING, OverallStatus.UNDER_REVIEW}


class ReviewService:
    """Applies department decisions and re-applications to reviewable entities.

    Collaborators are injected so callers (and tests) control storage,
    notification delivery, audit and time. State writes go through a
    compare-and-swap on ``version``; notification, audit and event emission
    happen only after the state commit and never roll it back.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session] | None = None,
        notifications: NotificationService | None = None,
        auditor: AuditWriter | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory or open_session
        self._notifications = notifications or NotificationService(session_factory=self._session_factory)
        self._auditor = auditor or AuditWriter(session_factory=self._session_factory)
        self._clock = clock or now_utc

    def _session(self) -> Session:
        return self._session_factory()

    def _resolve_actor(self, session: Session, actor_id: str) -> User:
        actor = session.get(User, actor_id)
        if actor is None or not actor.is_active:
            raise ForbiddenError("actor not found or inactive")
        return actor

    def _load_entity(self, session: Session, entity_type: EntityType, entity_id: str) -> ReviewableEntity | None:
        model = REVIEWABLE_MODELS[entity_type]
        return session.get(model, entity_id)  # type: ignore[return-value]

    def _owner_user_id(self, session: Session, entity: ReviewableEntity | None) -> str | None:
        if entity is None:
            return None
        if isinstance(entity, PilotProfile):
            owner = session.get(User, entity.user_id)
            return owner.id if owner is not None else None
        profile = session.get(PilotProfile, entity.pilot_id)
        return profile.user_id if profile is not None else None

    def _compare_and_swap(
        self,
        session: Session,
        entity_type: EntityType,
        entity: ReviewableEntity,
        values: dict[str, Any],
    ) -> None:
        model: Any = REVIEWABLE_MODELS[entity_type]
        statement = (
            sa.update(model)
            .where(model.id == entity.id)
            .where(model.version == entity.version)
            .values(version=entity.version + 1, **values)
        )
        try:
            result = session.execute(statement)
            if result.rowcount != 1:
                session.rollback()
                raise PersistenceError(
                    "concurrent update detected; transition not applied",
                    detail={"entity_type": entity_type.value, "entity_id": entity.id},
                )
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError(
                "failed to persist review transition",
                detail={"entity_type": entity_type.value, "entity_id": entity.id},
            ) from exc

    def _emit(self, notification: NotificationDraft | None, audit: AuditDraft) -> None:
        if notification is not None:
            try:
                self._notifications.notify(notification)
            except Exception:
                logger.exception(
                    "notification delivery failed for %s %s",
                    notification.entity_type,
                    notification.entity_id,
                )
        try:
            self._auditor.write(audit)
        except Exception:
            logger.exception("audit write failed for %s %s", audit.entity_type, audit.entity_id)

    def _publish(self, event_type: str, payload: dict[str, Any], actor_id: str) -> None:
        try:
            with self._session() as session:
                event_bus.publish_dict(event_type, payload, actor_id=actor_id, session=session)
                session.commit()
        except Exception:
            logger.exception("event publish failed: %s", event_type)

    def apply_review(
        self,
        entity_type: str,
        entity_id: str,
        department: str | None,
        decision: str | None,
        notes: str | None,
        actor_id: str,
    ) -> ReviewResult:
        kind = parse_entity_type(entity_type)
        verdict = parse_decision(decision)
        with self._session() as session:
            actor = self._resolve_actor(session, actor_id)
            target_department = resolve_department(department, actor.role)
            entity = self._load_entity(session, kind, entity_id)
            owner_user_id = self._owner_user_id(session, entity)
            guard_review(
                entity,
                owner_exists=owner_user_id is not None,
                department=target_department,
                actor_role=actor.role,
            )
            if entity is None or owner_user_id is None:
                raise NotFoundError("entity not found")

            reviewed_at = self._clock()
            previous_overall = OverallStatus(entity.overall_status)
            reviews, overall = apply_department_decision(
                load_reviews(entity.reviews),
                department=target_department,
                decision=verdict,
                reviewer_id=actor.id,
                reviewed_at=reviewed_at,
                notes=notes,
            )
            values: dict[str, Any] = {
                "reviews": dump_reviews(reviews),
                "overall_status": overall,
                "updated_at": reviewed_at,
            }
            if isinstance(entity, Flight) and overall == OverallStatus.APPROVED and entity.final_approved_at is None:
                values["final_approved_at"] = reviewed_at
            self._compare_and_swap(session, kind, entity, values)

        logger.info(
            "%s %s %s by %s (overall %s -> %s)",
            kind.value,
            entity_id,
            verdict.value,
            target_department.value,
            previous_overall.value,
            overall.value,
        )
        self._emit(
            derive_review_notification(
                entity_type=kind,
                entity_id=entity_id,
                owner_user_id=owner_user_id,
                department=target_department,
                decision=verdict,
                overall_status=overall,
                notes=notes,
            ),
            derive_review_audit(
                entity_type=kind,
                entity_id=entity_id,
                actor_id=actor.id,
                department=target_department,
                decision=verdict,
                notes=notes,
                previous_overall_status=previous_overall,
                overall_status=overall,
                reviewed_at=reviewed_at,
            ),
        )
        self._publish(
            f"{kind.value}.reviewed",
            {
                "entity_id": entity_id,
                "department": target_department.value,
                "decision": verdict.value,
                "overall_status": overall.value,
            },
            actor.id,
        )
        return ReviewResult(
            entity_type=kind,
            entity_id=entity_id,
            department=target_department,
            decision=verdict,
            overall_status=overall,
            reviewed_at=reviewed_at,
        )

    def reapply(self, entity_type: str, entity_id: str, actor_id: str) -> ReviewableEntity:
        kind = parse_entity_type(entity_type)
        with self._session() as session:
            actor = self._resolve_actor(session, actor_id)
            entity = self._load_entity(session, kind, entity_id)
            owner_user_id = self._owner_user_id(session, entity)
            if entity is None or owner_user_id is None:
                raise NotFoundError("entity not found")
            if actor.role != UserRole.ADMIN and actor.id != owner_user_id:
                raise ForbiddenError("only the owning pilot can re-apply")
            guard_reapply(entity)

            reset_at = self._clock()
            previous_reviews = dict(entity.reviews)
            self._compare_and_swap(
                session,
                kind,
                entity,
                {
                    "reviews": dump_reviews(reset_reviews()),
                    "overall_status": OverallStatus.PENDING,
                    "updated_at": reset_at,
                },
            )
            session.refresh(entity)

        logger.info("%s %s re-applied by %s", kind.value, entity_id, actor.id)
        self._emit(
            None,
            derive_reapply_audit(
                entity_type=kind,
                entity_id=entity_id,
                actor_id=actor.id,
                previous_reviews=previous_reviews,
                reset_at=reset_at,
            ),
        )
        self._publish(f"{kind.value}.reapplied", {"entity_id": entity_id}, actor.id)
        return entity

    def list_queue(self, entity_type: str, actor_id: str) -> list[ReviewableEntity]:
        """Entities waiting on the actor's department.

        Admins see every entity that is still open in any department.
        """
        kind = parse_entity_type(entity_type)
        model: Any = REVIEWABLE_MODELS[kind]
        with self._session() as session:
            actor = self._resolve_actor(session, actor_id)
            own_department = department_for_role(actor.role)
            if actor.role != UserRole.ADMIN and own_department is None:
                raise ForbiddenError("only department reviewers can list review queues")
            rows = list(
                session.exec(
                    select(model)
                    .where(model.overall_status.in_(list(OPEN_OVERALL_STATUSES)))
                    .order_by(model.created_at)
                ).all()
            )
            if own_department is None:
                return rows
            return [
                item
                for item in rows
                if load_reviews(item.reviews)[own_department].status == ReviewStatus.PENDING
            ]
