from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, status

from clearance.api.deps import get_current_claims, raise_http_error, require_perm
from clearance.domain.errors import ClearanceError
from clearance.domain.models import DroneCreate, DroneRead, EntityType
from clearance.domain.permissions import PERM_DRONE_WRITE
from clearance.services.drone_service import DroneService
from clearance.services.review_service import ReviewService

router = APIRouter()


def get_drone_service() -> DroneService:
    return DroneService()


def get_review_service() -> ReviewService:
    return ReviewService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[DroneService, Depends(get_drone_service)]
Reviews = Annotated[ReviewService, Depends(get_review_service)]


@router.post(
    "",
    response_model=DroneRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_DRONE_WRITE))],
)
def register_drone(payload: DroneCreate, claims: Claims, service: Service) -> DroneRead:
    try:
        drone = service.register_drone(claims["sub"], payload)
        return DroneRead.model_validate(drone)
    except ClearanceError as exc:
        raise_http_error(exc)


@router.get("", response_model=list[DroneRead])
def list_drones(claims: Claims, service: Service) -> list[DroneRead]:
    return [DroneRead.model_validate(item) for item in service.list_own_drones(claims["sub"])]


@router.post(
    "/{drone_id}/reapply",
    response_model=DroneRead,
    dependencies=[Depends(require_perm(PERM_DRONE_WRITE))],
)
def reapply_drone(drone_id: str, claims: Claims, reviews: Reviews) -> DroneRead:
    try:
        drone = reviews.reapply(EntityType.DRONE.value, drone_id, claims["sub"])
        return DroneRead.model_validate(drone)
    except ClearanceError as exc:
        raise_http_error(exc)
