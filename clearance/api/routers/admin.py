from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from clearance.api.deps import get_current_claims, raise_http_error, require_perm
from clearance.domain.errors import ClearanceError
from clearance.domain.models import (
    AuditAction,
    AuditLogRead,
    RoleUpdateRequest,
    SystemStatsRead,
    UserRead,
    UserRole,
)
from clearance.domain.permissions import PERM_AUDIT_READ, PERM_IDENTITY_READ, PERM_IDENTITY_WRITE
from clearance.services.dashboard_service import DashboardService
from clearance.services.identity_service import IdentityService

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


def get_dashboard_service() -> DashboardService:
    return DashboardService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Identity = Annotated[IdentityService, Depends(get_identity_service)]
Dashboard = Annotated[DashboardService, Depends(get_dashboard_service)]


@router.get(
    "/users",
    response_model=list[UserRead],
    dependencies=[Depends(require_perm(PERM_IDENTITY_READ))],
)
def list_users(service: Identity, role: UserRole | None = None) -> list[UserRead]:
    return [UserRead.model_validate(item) for item in service.list_users(role)]


@router.patch(
    "/users/{user_id}/role",
    response_model=UserRead,
    dependencies=[Depends(require_perm(PERM_IDENTITY_WRITE))],
)
def update_user_role(
    user_id: str,
    payload: RoleUpdateRequest,
    claims: Claims,
    service: Identity,
) -> UserRead:
    try:
        user = service.update_role(claims["sub"], user_id, payload.role)
        return UserRead.model_validate(user)
    except ClearanceError as exc:
        raise_http_error(exc)


@router.get(
    "/stats",
    response_model=SystemStatsRead,
    dependencies=[Depends(require_perm(PERM_AUDIT_READ))],
)
def system_stats(service: Dashboard) -> SystemStatsRead:
    return service.system_stats()


@router.get(
    "/audit-logs",
    response_model=list[AuditLogRead],
    dependencies=[Depends(require_perm(PERM_AUDIT_READ))],
)
def list_audit_logs(
    service: Dashboard,
    entity_type: str | None = None,
    entity_id: str | None = None,
    action: AuditAction | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[AuditLogRead]:
    rows = service.list_audit_logs(entity_type=entity_type, entity_id=entity_id, action=action, limit=limit)
    return [AuditLogRead.model_validate(item) for item in rows]
