from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from clearance.domain.errors import (
    ClearanceError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationFailedError,
)
from clearance.domain.models import (
    AuditAction,
    Drone,
    EntityType,
    Flight,
    FlightCreate,
    NotificationType,
    PilotProfile,
    User,
    UserRole,
    now_utc,
)
from clearance.domain.permissions import REVIEWER_ROLES
from clearance.domain.review_rules import AuditDraft, NotificationDraft
from clearance.domain.state_machine import OperationalStatus, OverallStatus, can_operational_transition
from clearance.infra.audit import AuditWriter
from clearance.infra.db import open_session
from clearance.infra.events import event_bus
from clearance.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class FlightService:
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

    def _get_flight(self, session: Session, flight_id: str) -> Flight:
        flight = session.get(Flight, flight_id)
        if flight is None:
            raise NotFoundError("flight not found")
        return flight

    def _owner_user_id(self, session: Session, flight: Flight) -> str:
        profile = session.get(PilotProfile, flight.pilot_id)
        if profile is None:
            raise NotFoundError("flight not found")
        return profile.user_id

    def _get_owned_flight(self, session: Session, flight_id: str, actor_id: str) -> Flight:
        flight = self._get_flight(session, flight_id)
        if self._owner_user_id(session, flight) != actor_id:
            raise ForbiddenError("only the owning pilot can operate this flight")
        return flight

    def _write_audit(self, draft: AuditDraft) -> None:
        try:
            self._auditor.write(draft)
        except Exception:
            logger.exception("audit write failed for flight %s", draft.entity_id)

    def _publish(self, event_type: str, payload: dict[str, Any], actor_id: str) -> None:
        try:
            with self._session() as session:
                event_bus.publish_dict(event_type, payload, actor_id=actor_id, session=session)
                session.commit()
        except Exception:
            logger.exception("event publish failed: %s", event_type)

    def _commit_conditional_update(
        self,
        session: Session,
        statement: Any,
        on_miss: ClearanceError,
    ) -> None:
        try:
            result = session.execute(statement)
            if result.rowcount != 1:
                session.rollback()
                raise on_miss
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError("failed to persist flight update", detail={"entity_type": "flight"}) from exc

    @staticmethod
    def _flight_number(now: datetime) -> str:
        return f"FL-{now:%Y%m%d}-{uuid4().hex[:6].upper()}"

    def create_flight(self, actor_id: str, payload: FlightCreate) -> Flight:
        if payload.scheduled_end <= payload.scheduled_start:
            raise ValidationFailedError("scheduled_end must be after scheduled_start")
        with self._session() as session:
            profile = session.exec(select(PilotProfile).where(PilotProfile.user_id == actor_id)).first()
            if profile is None:
                raise NotFoundError("pilot profile not found; complete your pilot profile first")
            if profile.overall_status == OverallStatus.REJECTED:
                raise InvalidStateError(
                    "pilot profile has been rejected; re-apply before submitting flight requests"
                )
            drone = session.get(Drone, payload.drone_id)
            if drone is None or drone.pilot_id != profile.id:
                raise NotFoundError("drone not found")

            now = self._clock()
            flight = Flight(
                pilot_id=profile.id,
                drone_id=drone.id,
                flight_number=self._flight_number(now),
                purpose=payload.purpose,
                description=payload.description,
                departure_location=payload.departure_location,
                departure_lat=payload.departure_lat,
                departure_lng=payload.departure_lng,
                destination_location=payload.destination_location,
                destination_lat=payload.destination_lat,
                destination_lng=payload.destination_lng,
                scheduled_start=payload.scheduled_start,
                scheduled_end=payload.scheduled_end,
                max_altitude_m=payload.max_altitude_m,
                estimated_duration_minutes=payload.estimated_duration_minutes,
                created_at=now,
                updated_at=now,
            )
            session.add(flight)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise PersistenceError("flight create conflict") from exc
            session.refresh(flight)

            reviewers = session.exec(
                select(User)
                .where(col(User.role).in_(list(REVIEWER_ROLES)))
                .where(User.is_active == True)  # noqa: E712
            ).all()
            reviewer_ids = [item.id for item in reviewers]

        self._write_audit(
            AuditDraft(
                actor_id=actor_id,
                action=AuditAction.CREATE,
                entity_type=EntityType.FLIGHT.value,
                entity_id=flight.id,
                description=f"Flight request {flight.flight_number} submitted",
                detail={"drone_id": flight.drone_id, "purpose": flight.purpose},
            )
        )
        try:
            self._notifications.notify_many(
                NotificationDraft(
                    user_id=reviewer_id,
                    type=NotificationType.INFO,
                    title="New Flight Request",
                    message=f"Flight request {flight.flight_number} is awaiting your department's review.",
                    entity_type=EntityType.FLIGHT.value,
                    entity_id=flight.id,
                )
                for reviewer_id in reviewer_ids
            )
        except Exception:
            logger.exception("reviewer notification failed for flight %s", flight.id)
        self._publish(
            "flight.submitted",
            {"flight_id": flight.id, "flight_number": flight.flight_number},
            actor_id,
        )
        return flight

    def list_own_flights(self, actor_id: str) -> list[Flight]:
        with self._session() as session:
            profile = session.exec(select(PilotProfile).where(PilotProfile.user_id == actor_id)).first()
            if profile is None:
                return []
            statement = (
                select(Flight).where(Flight.pilot_id == profile.id).order_by(col(Flight.created_at).desc())
            )
            return list(session.exec(statement).all())

    def get_flight(self, flight_id: str, actor_id: str) -> Flight:
        with self._session() as session:
            flight = self._get_flight(session, flight_id)
            actor = session.get(User, actor_id)
            if actor is None:
                raise ForbiddenError("actor not found")
            is_reviewer = actor.role == UserRole.ADMIN or actor.role in REVIEWER_ROLES
            if not is_reviewer and self._owner_user_id(session, flight) != actor.id:
                raise ForbiddenError("flight is not visible to this user")
            return flight

    def list_active_flights(self) -> list[Flight]:
        with self._session() as session:
            statement = (
                select(Flight)
                .where(Flight.operational_status == OperationalStatus.ACTIVE)
                .order_by(col(Flight.actual_start).desc())
            )
            return list(session.exec(statement).all())

    def _transition_operational(
        self,
        flight_id: str,
        actor_id: str,
        target: OperationalStatus,
    ) -> Flight:
        with self._session() as session:
            flight = self._get_owned_flight(session, flight_id, actor_id)
            if flight.overall_status != OverallStatus.APPROVED:
                raise InvalidStateError("flight has not been approved by all departments")
            source = OperationalStatus(flight.operational_status)
            if not can_operational_transition(source, target):
                raise InvalidStateError(f"illegal transition: {source.value} -> {target.value}")

            now = self._clock()
            values: dict[str, Any] = {
                "operational_status": target,
                "updated_at": now,
                "version": flight.version + 1,
            }
            if target == OperationalStatus.ACTIVE:
                values["actual_start"] = now
            else:
                values["actual_end"] = now
            statement = (
                sa.update(Flight)
                .where(col(Flight.id) == flight.id)
                .where(col(Flight.version) == flight.version)
                .values(**values)
            )
            self._commit_conditional_update(
                session,
                statement,
                PersistenceError(
                    "concurrent update detected; transition not applied",
                    detail={"entity_type": "flight", "entity_id": flight.id},
                ),
            )
            session.refresh(flight)

        verb = "started" if target == OperationalStatus.ACTIVE else "ended"
        logger.info("flight %s %s by %s", flight_id, verb, actor_id)
        self._write_audit(
            AuditDraft(
                actor_id=actor_id,
                action=AuditAction.UPDATE,
                entity_type=EntityType.FLIGHT.value,
                entity_id=flight_id,
                description=f"Flight {verb}",
                detail={
                    "previous_operational_status": source.value,
                    "operational_status": target.value,
                    "at": now.isoformat(),
                },
            )
        )
        self._publish(
            f"flight.{verb}",
            {"flight_id": flight_id, "operational_status": target.value},
            actor_id,
        )
        return flight

    def start_operational(self, flight_id: str, actor_id: str) -> Flight:
        return self._transition_operational(flight_id, actor_id, OperationalStatus.ACTIVE)

    def end_operational(self, flight_id: str, actor_id: str) -> Flight:
        return self._transition_operational(flight_id, actor_id, OperationalStatus.COMPLETED)

    def record_position(
        self,
        flight_id: str,
        actor_id: str,
        lat: float,
        lng: float,
        altitude: float | None = None,
    ) -> Flight:
        if not -90 <= lat <= 90:
            raise ValidationFailedError("lat must be within [-90, 90]")
        if not -180 <= lng <= 180:
            raise ValidationFailedError("lng must be within [-180, 180]")
        if altitude is not None and altitude < 0:
            raise ValidationFailedError("altitude must not be negative")
        with self._session() as session:
            flight = self._get_owned_flight(session, flight_id, actor_id)
            if flight.operational_status != OperationalStatus.ACTIVE:
                raise InvalidStateError("flight must be active to update location")
            statement = (
                sa.update(Flight)
                .where(col(Flight.id) == flight.id)
                .where(col(Flight.operational_status) == OperationalStatus.ACTIVE)
                .values(
                    current_lat=lat,
                    current_lng=lng,
                    current_altitude_m=altitude,
                    last_gps_update=self._clock(),
                )
            )
            self._commit_conditional_update(
                session, statement, InvalidStateError("flight must be active to update location")
            )
            session.refresh(flight)
            return flight
