from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from clearance.domain.errors import InvalidStateError, NotFoundError
from clearance.domain.models import AuditAction, Drone, DroneCreate, EntityType, PilotProfile
from clearance.domain.state_machine import OverallStatus
from clearance.infra.audit import write_audit_log
from clearance.infra.db import open_session
from clearance.infra.events import event_bus

logger = logging.getLogger(__name__)


class DroneService:
    def __init__(self, *, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory or open_session

    def _session(self) -> Session:
        return self._session_factory()

    def _get_profile(self, session: Session, user_id: str) -> PilotProfile:
        profile = session.exec(select(PilotProfile).where(PilotProfile.user_id == user_id)).first()
        if profile is None:
            raise NotFoundError("pilot profile not found; complete your pilot profile before registering drones")
        return profile

    def register_drone(self, actor_id: str, payload: DroneCreate) -> Drone:
        with self._session() as session:
            profile = self._get_profile(session, actor_id)
            if profile.overall_status == OverallStatus.REJECTED:
                raise InvalidStateError("pilot profile has been rejected; re-apply before registering drones")
            drone = Drone(pilot_id=profile.id, **payload.model_dump())
            session.add(drone)
            write_audit_log(
                actor_id=actor_id,
                action=AuditAction.CREATE,
                entity_type=EntityType.DRONE.value,
                entity_id=drone.id,
                description=f"Registered drone: {drone.manufacturer} {drone.model}",
                detail={
                    "manufacturer": drone.manufacturer,
                    "model": drone.model,
                    "serial_number": drone.serial_number,
                },
                session=session,
            )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise InvalidStateError("drone serial number already registered") from exc
            session.refresh(drone)

        try:
            with self._session() as session:
                event_bus.publish_dict(
                    "drone.registered",
                    {"drone_id": drone.id, "serial_number": drone.serial_number},
                    actor_id=actor_id,
                    session=session,
                )
                session.commit()
        except Exception:
            logger.exception("event publish failed for drone %s", drone.id)
        return drone

    def list_own_drones(self, actor_id: str) -> list[Drone]:
        with self._session() as session:
            profile = session.exec(select(PilotProfile).where(PilotProfile.user_id == actor_id)).first()
            if profile is None:
                return []
            statement = select(Drone).where(Drone.pilot_id == profile.id).order_by(col(Drone.created_at).desc())
            return list(session.exec(statement).all())
