from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from clearance.api.deps import get_current_claims, raise_http_error, require_perm
from clearance.domain.errors import ClearanceError
from clearance.domain.models import (
    DocumentRead,
    DocumentVerifyRequest,
    DroneRead,
    EntityType,
    FlightRead,
    PilotProfileRead,
    ReviewRequest,
    ReviewResult,
)
from clearance.domain.permissions import PERM_REVIEW_READ, PERM_REVIEW_WRITE
from clearance.services.document_service import DocumentService
from clearance.services.flight_service import FlightService
from clearance.services.review_service import ReviewService

router = APIRouter()


def get_review_service() -> ReviewService:
    return ReviewService()


def get_flight_service() -> FlightService:
    return FlightService()


def get_document_service() -> DocumentService:
    return DocumentService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[ReviewService, Depends(get_review_service)]
Flights = Annotated[FlightService, Depends(get_flight_service)]
Documents = Annotated[DocumentService, Depends(get_document_service)]


@router.get(
    "/queue/pilot-profiles",
    response_model=list[PilotProfileRead],
    dependencies=[Depends(require_perm(PERM_REVIEW_READ))],
)
def pilot_profile_queue(claims: Claims, service: Service) -> list[PilotProfileRead]:
    try:
        rows = service.list_queue(EntityType.PILOT_PROFILE.value, claims["sub"])
    except ClearanceError as exc:
        raise_http_error(exc)
    return [PilotProfileRead.model_validate(item) for item in rows]


@router.get(
    "/queue/drones",
    response_model=list[DroneRead],
    dependencies=[Depends(require_perm(PERM_REVIEW_READ))],
)
def drone_queue(claims: Claims, service: Service) -> list[DroneRead]:
    try:
        rows = service.list_queue(EntityType.DRONE.value, claims["sub"])
    except ClearanceError as exc:
        raise_http_error(exc)
    return [DroneRead.model_validate(item) for item in rows]


@router.get(
    "/queue/flights",
    response_model=list[FlightRead],
    dependencies=[Depends(require_perm(PERM_REVIEW_READ))],
)
def flight_queue(claims: Claims, service: Service) -> list[FlightRead]:
    try:
        rows = service.list_queue(EntityType.FLIGHT.value, claims["sub"])
    except ClearanceError as exc:
        raise_http_error(exc)
    return [FlightRead.model_validate(item) for item in rows]


@router.get(
    "/active-flights",
    response_model=list[FlightRead],
    dependencies=[Depends(require_perm(PERM_REVIEW_READ))],
)
def active_flights(flights: Flights) -> list[FlightRead]:
    return [FlightRead.model_validate(item) for item in flights.list_active_flights()]


@router.get(
    "/documents",
    response_model=list[DocumentRead],
    dependencies=[Depends(require_perm(PERM_REVIEW_READ))],
)
def pending_documents(documents: Documents) -> list[DocumentRead]:
    return [DocumentRead.model_validate(item) for item in documents.list_pending_documents()]


@router.post(
    "/documents/{document_id}/verify",
    response_model=DocumentRead,
    dependencies=[Depends(require_perm(PERM_REVIEW_WRITE))],
)
def verify_document(
    document_id: str,
    payload: DocumentVerifyRequest,
    claims: Claims,
    documents: Documents,
) -> DocumentRead:
    try:
        document = documents.verify_document(claims["sub"], document_id, payload.action, payload.notes)
        return DocumentRead.model_validate(document)
    except ClearanceError as exc:
        raise_http_error(exc)


@router.post(
    "/{entity_type}/{entity_id}",
    response_model=ReviewResult,
    dependencies=[Depends(require_perm(PERM_REVIEW_WRITE))],
)
def submit_review(
    entity_type: str,
    entity_id: str,
    payload: ReviewRequest,
    claims: Claims,
    service: Service,
) -> ReviewResult:
    try:
        return service.apply_review(
            entity_type=entity_type,
            entity_id=entity_id,
            department=payload.department,
            decision=payload.decision,
            notes=payload.notes,
            actor_id=claims["sub"],
        )
    except ClearanceError as exc:
        raise_http_error(exc)
