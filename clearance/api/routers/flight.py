from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, status

from clearance.api.deps import get_current_claims, raise_http_error, require_perm
from clearance.domain.errors import ClearanceError
from clearance.domain.models import EntityType, FlightCreate, FlightRead, PositionUpdate
from clearance.domain.permissions import PERM_FLIGHT_READ, PERM_FLIGHT_WRITE
from clearance.services.flight_service import FlightService
from clearance.services.review_service import ReviewService

router = APIRouter()


def get_flight_service() -> FlightService:
    return FlightService()


def get_review_service() -> ReviewService:
    return ReviewService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[FlightService, Depends(get_flight_service)]
Reviews = Annotated[ReviewService, Depends(get_review_service)]


@router.post(
    "",
    response_model=FlightRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_FLIGHT_WRITE))],
)
def submit_flight(payload: FlightCreate, claims: Claims, service: Service) -> FlightRead:
    try:
        flight = service.create_flight(claims["sub"], payload)
        return FlightRead.model_validate(flight)
    except ClearanceError as exc:
        raise_http_error(exc)


@router.get(
    "",
    response_model=list[FlightRead],
    dependencies=[Depends(require_perm(PERM_FLIGHT_READ))],
)
def list_flights(claims: Claims, service: Service) -> list[FlightRead]:
    return [FlightRead.model_validate(item) for item in service.list_own_flights(claims["sub"])]


@router.get(
    "/{flight_id}",
    response_model=FlightRead,
    dependencies=[Depends(require_perm(PERM_FLIGHT_READ))],
)
def get_flight(flight_id: str, claims: Claims, service: Service) -> FlightRead:
    try:
        return FlightRead.model_validate(service.get_flight(flight_id, claims["sub"]))
    except ClearanceError as exc:
        raise_http_error(exc)


@router.post(
    "/{flight_id}/start",
    response_model=FlightRead,
    dependencies=[Depends(require_perm(PERM_FLIGHT_WRITE))],
)
def start_flight(flight_id: str, claims: Claims, service: Service) -> FlightRead:
    try:
        return FlightRead.model_validate(service.start_operational(flight_id, claims["sub"]))
    except ClearanceError as exc:
        raise_http_error(exc)


@router.post(
    "/{flight_id}/end",
    response_model=FlightRead,
    dependencies=[Depends(require_perm(PERM_FLIGHT_WRITE))],
)
def end_flight(flight_id: str, claims: Claims, service: Service) -> FlightRead:
    try:
        return FlightRead.model_validate(service.end_operational(flight_id, claims["sub"]))
    except ClearanceError as exc:
        raise_http_error(exc)


@router.post(
    "/{flight_id}/location",
    response_model=FlightRead,
    dependencies=[Depends(require_perm(PERM_FLIGHT_WRITE))],
)
def update_location(
    flight_id: str,
    payload: PositionUpdate,
    claims: Claims,
    service: Service,
) -> FlightRead:
    try:
        flight = service.record_position(
            flight_id,
            claims["sub"],
            payload.lat,
            payload.lng,
            payload.altitude,
        )
        return FlightRead.model_validate(flight)
    except ClearanceError as exc:
        raise_http_error(exc)


@router.post(
    "/{flight_id}/reapply",
    response_model=FlightRead,
    dependencies=[Depends(require_perm(PERM_FLIGHT_WRITE))],
)
def reapply_flight(flight_id: str, claims: Claims, reviews: Reviews) -> FlightRead:
    try:
        flight = reviews.reapply(EntityType.FLIGHT.value, flight_id, claims["sub"])
        return FlightRead.model_validate(flight)
    except ClearanceError as exc:
        raise_http_error(exc)
