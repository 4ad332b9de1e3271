from __future__ import annotations

import logging
import os
from collections.abc import Callable
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from clearance.domain.errors import ForbiddenError, InvalidStateError, NotFoundError
from clearance.domain.models import (
    AuditAction,
    EntityType,
    NotificationType,
    Payment,
    PaymentStatus,
    PilotProfile,
    PilotProfileCreate,
    PilotProfileUpdate,
    User,
    UserRole,
    now_utc,
)
from clearance.domain.review_rules import NotificationDraft
from clearance.domain.state_machine import OverallStatus
from clearance.infra.audit import write_audit_log
from clearance.infra.db import open_session
from clearance.infra.events import event_bus
from clearance.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

REGISTRATION_FEE = float(os.getenv("REGISTRATION_FEE", "25.00"))
EDITABLE_PROFILE_STATUSES = {OverallStatus.PENDING, OverallStatus.REJECTED}


class PilotService:
    def __init__(
        self,
        *,
        session_factory: Callable[[], Session] | None = None,
        notifications: NotificationService | None = None,
    ) -> None:
        self._session_factory = session_factory or open_session
        self._notifications = notifications or NotificationService(session_factory=self._session_factory)

    def _session(self) -> Session:
        return self._session_factory()

    def _publish(self, event_type: str, payload: dict[str, Any], actor_id: str) -> None:
        try:
            with self._session() as session:
                event_bus.publish_dict(event_type, payload, actor_id=actor_id, session=session)
                session.commit()
        except Exception:
            logger.exception("event publish failed: %s", event_type)

    def _get_own_profile(self, session: Session, user_id: str) -> PilotProfile:
        profile = session.exec(select(PilotProfile).where(PilotProfile.user_id == user_id)).first()
        if profile is None:
            raise NotFoundError("pilot profile not found")
        return profile

    def create_profile(self, actor_id: str, payload: PilotProfileCreate) -> PilotProfile:
        with self._session() as session:
            actor = session.get(User, actor_id)
            if actor is None or actor.role != UserRole.PILOT:
                raise ForbiddenError("only pilots can register a pilot profile")
            profile = PilotProfile(user_id=actor_id, **payload.model_dump())
            session.add(profile)
            write_audit_log(
                actor_id=actor_id,
                action=AuditAction.CREATE,
                entity_type=EntityType.PILOT_PROFILE.value,
                entity_id=profile.id,
                description=f"Pilot profile created for {profile.full_name}",
                detail={"city": profile.city, "country": profile.country},
                session=session,
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise InvalidStateError("pilot profile already exists") from exc
            session.refresh(profile)

        self._publish("pilot_profile.created", {"profile_id": profile.id}, actor_id)
        return profile

    def get_own_profile(self, actor_id: str) -> PilotProfile:
        with self._session() as session:
            return self._get_own_profile(session, actor_id)

    def update_profile(self, actor_id: str, payload: PilotProfileUpdate) -> PilotProfile:
        with self._session() as session:
            profile = self._get_own_profile(session, actor_id)
            if profile.overall_status not in EDITABLE_PROFILE_STATUSES:
                raise InvalidStateError("profile can only be edited while pending or rejected")
            changes = payload.model_dump(exclude_none=True)
            for key, value in changes.items():
                setattr(profile, key, value)
            profile.updated_at = now_utc()
            profile.version += 1
            session.add(profile)
            write_audit_log(
                actor_id=actor_id,
                action=AuditAction.UPDATE,
                entity_type=EntityType.PILOT_PROFILE.value,
                entity_id=profile.id,
                description="Pilot profile details updated",
                detail={"fields": sorted(changes)},
                session=session,
            )
            session.commit()
            session.refresh(profile)
            return profile

    def pay_registration_fee(self, actor_id: str, amount: float | None = None) -> Payment:
        """Record the registration fee.

        There is no payment gateway behind this: the payment is stored as
        completed immediately with provider ``mock``.
        """
        charged = amount if amount is not None else REGISTRATION_FEE
        with self._session() as session:
            actor = session.get(User, actor_id)
            if actor is None:
                raise NotFoundError("user not found")
            now = now_utc()
            payment = Payment(
                user_id=actor_id,
                amount=charged,
                currency="USD",
                status=PaymentStatus.COMPLETED,
                payment_provider="mock",
                description="Pilot registration fee",
                paid_at=now,
            )
            session.add(payment)
            write_audit_log(
                actor_id=actor_id,
                action=AuditAction.PAYMENT,
                entity_type="payment",
                entity_id=payment.id,
                description=f"Payment of ${charged:.2f} USD completed",
                detail={"amount": charged, "currency": "USD", "provider": "mock"},
                session=session,
            )
            session.commit()
            session.refresh(payment)

        try:
            self._notifications.notify(
                NotificationDraft(
                    user_id=actor_id,
                    type=NotificationType.INFO,
                    title="Payment Received",
                    message=(
                        f"Your registration fee of ${charged:.2f} has been received. "
                        "Your profile is now under review."
                    ),
                    entity_type="payment",
                    entity_id=payment.id,
                )
            )
        except Exception:
            logger.exception("payment notification failed for %s", payment.id)
        return payment
