from __future__ import annotations

from collections import Counter
from collections.abc import Callable

from sqlmodel import Session, col, select

from clearance.domain.models import (
    AuditAction,
    AuditLog,
    Drone,
    Flight,
    Payment,
    PaymentStatus,
    PilotProfile,
    SystemStatsRead,
    User,
)
from clearance.domain.state_machine import OperationalStatus
from clearance.infra.db import open_session


class DashboardService:
    def __init__(self, *, session_factory: Callable[[], Session] | None = None) -> None:
        self._session_factory = session_factory or open_session

    def _session(self) -> Session:
        return self._session_factory()

    def system_stats(self) -> SystemStatsRead:
        with self._session() as session:
            users = session.exec(select(User)).all()
            profiles = session.exec(select(PilotProfile)).all()
            drones = session.exec(select(Drone)).all()
            flights = session.exec(select(Flight)).all()
            payments = session.exec(select(Payment).where(Payment.status == PaymentStatus.COMPLETED)).all()

        return SystemStatsRead(
            users_by_role=dict(Counter(str(item.role) for item in users)),
            pilot_profiles_by_status=dict(Counter(str(item.overall_status) for item in profiles)),
            drones_by_status=dict(Counter(str(item.overall_status) for item in drones)),
            flights_by_status=dict(Counter(str(item.overall_status) for item in flights)),
            active_flights=sum(1 for item in flights if item.operational_status == OperationalStatus.ACTIVE),
            total_payments=round(sum(item.amount for item in payments), 2),
        )

    def list_audit_logs(
        self,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        action: AuditAction | None = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        with self._session() as session:
            statement = select(AuditLog)
            if entity_type is not None:
                statement = statement.where(AuditLog.entity_type == entity_type)
            if entity_id is not None:
                statement = statement.where(AuditLog.entity_id == entity_id)
            if action is not None:
                statement = statement.where(AuditLog.action == action)
            statement = statement.order_by(col(AuditLog.ts).desc()).limit(limit)
            return list(session.exec(statement).all())
