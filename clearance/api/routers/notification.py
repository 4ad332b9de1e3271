from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from clearance.api.deps import get_current_claims, raise_http_error
from clearance.domain.errors import ClearanceError
from clearance.domain.models import NotificationRead
from clearance.services.notification_service import NotificationService

router = APIRouter()


def get_notification_service() -> NotificationService:
    return NotificationService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[NotificationService, Depends(get_notification_service)]


@router.get("", response_model=list[NotificationRead])
def list_notifications(claims: Claims, service: Service, unread_only: bool = False) -> list[NotificationRead]:
    rows = service.list_for_user(claims["sub"], unread_only=unread_only)
    return [NotificationRead.model_validate(item) for item in rows]


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_read(notification_id: str, claims: Claims, service: Service) -> NotificationRead:
    try:
        return NotificationRead.model_validate(service.mark_read(claims["sub"], notification_id))
    except ClearanceError as exc:
        raise_http_error(exc)
