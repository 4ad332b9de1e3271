from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, status

from clearance.api.deps import get_current_claims, raise_http_error, require_perm
from clearance.domain.errors import ClearanceError
from clearance.domain.models import (
    DocumentRead,
    DocumentUpload,
    EntityType,
    PaymentCreate,
    PaymentRead,
    PilotProfileCreate,
    PilotProfileRead,
    PilotProfileUpdate,
)
from clearance.domain.permissions import PERM_DOCUMENT_WRITE, PERM_PAYMENT_WRITE, PERM_PROFILE_WRITE
from clearance.services.document_service import DocumentService
from clearance.services.pilot_service import PilotService
from clearance.services.review_service import ReviewService

router = APIRouter()


def get_pilot_service() -> PilotService:
    return PilotService()


def get_document_service() -> DocumentService:
    return DocumentService()


def get_review_service() -> ReviewService:
    return ReviewService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[PilotService, Depends(get_pilot_service)]
Documents = Annotated[DocumentService, Depends(get_document_service)]
Reviews = Annotated[ReviewService, Depends(get_review_service)]


@router.post(
    "/profile",
    response_model=PilotProfileRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_PROFILE_WRITE))],
)
def create_profile(payload: PilotProfileCreate, claims: Claims, service: Service) -> PilotProfileRead:
    try:
        profile = service.create_profile(claims["sub"], payload)
        return PilotProfileRead.model_validate(profile)
    except ClearanceError as exc:
        raise_http_error(exc)


@router.get("/profile", response_model=PilotProfileRead)
def get_profile(claims: Claims, service: Service) -> PilotProfileRead:
    try:
        return PilotProfileRead.model_validate(service.get_own_profile(claims["sub"]))
    except ClearanceError as exc:
        raise_http_error(exc)


@router.patch(
    "/profile",
    response_model=PilotProfileRead,
    dependencies=[Depends(require_perm(PERM_PROFILE_WRITE))],
)
def update_profile(payload: PilotProfileUpdate, claims: Claims, service: Service) -> PilotProfileRead:
    try:
        profile = service.update_profile(claims["sub"], payload)
        return PilotProfileRead.model_validate(profile)
    except ClearanceError as exc:
        raise_http_error(exc)


@router.post(
    "/profile/reapply",
    response_model=PilotProfileRead,
    dependencies=[Depends(require_perm(PERM_PROFILE_WRITE))],
)
def reapply_profile(claims: Claims, service: Service, reviews: Reviews) -> PilotProfileRead:
    try:
        profile = service.get_own_profile(claims["sub"])
        updated = reviews.reapply(EntityType.PILOT_PROFILE.value, profile.id, claims["sub"])
        return PilotProfileRead.model_validate(updated)
    except ClearanceError as exc:
        raise_http_error(exc)


@router.post(
    "/documents",
    response_model=DocumentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_DOCUMENT_WRITE))],
)
def upload_document(payload: DocumentUpload, claims: Claims, documents: Documents) -> DocumentRead:
    try:
        document = documents.upload_document(claims["sub"], payload)
        return DocumentRead.model_validate(document)
    except ClearanceError as exc:
        raise_http_error(exc)


@router.get("/documents", response_model=list[DocumentRead])
def list_documents(claims: Claims, documents: Documents) -> list[DocumentRead]:
    return [DocumentRead.model_validate(item) for item in documents.list_documents(claims["sub"])]


@router.post(
    "/payments",
    response_model=PaymentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_perm(PERM_PAYMENT_WRITE))],
)
def pay_registration_fee(payload: PaymentCreate, claims: Claims, service: Service) -> PaymentRead:
    try:
        payment = service.pay_registration_fee(claims["sub"], payload.amount)
        return PaymentRead.model_validate(payment)
    except ClearanceError as exc:
        raise_http_error(exc)
