from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from clearance.api.deps import get_current_claims, raise_http_error
from clearance.domain.errors import ClearanceError
from clearance.domain.models import (
    BootstrapAdminRequest,
    LoginRequest,
    RegisterRequest,
    TokenResponse,
    UserRead,
)
from clearance.infra.auth import create_access_token
from clearance.services.identity_service import AuthError, IdentityService

router = APIRouter()


def get_identity_service() -> IdentityService:
    return IdentityService()


Claims = Annotated[dict[str, Any], Depends(get_current_claims)]
Service = Annotated[IdentityService, Depends(get_identity_service)]


def _handle_identity_error(exc: Exception) -> None:
    if isinstance(exc, AuthError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    if isinstance(exc, ClearanceError):
        raise_http_error(exc)
    raise exc


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, service: Service) -> UserRead:
    try:
        user = service.register(payload)
        return UserRead.model_validate(user)
    except ClearanceError as exc:
        _handle_identity_error(exc)
        raise


@router.post("/bootstrap-admin", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def bootstrap_admin(payload: BootstrapAdminRequest, service: Service) -> UserRead:
    try:
        user = service.bootstrap_admin(payload)
        return UserRead.model_validate(user)
    except ClearanceError as exc:
        _handle_identity_error(exc)
        raise


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, service: Service) -> TokenResponse:
    try:
        user, permissions = service.login(payload.email, payload.password)
    except (AuthError, ClearanceError) as exc:
        _handle_identity_error(exc)
        raise
    token = create_access_token(
        user_id=user.id,
        role=user.role.value,
        permissions=permissions,
    )
    return TokenResponse(access_token=token, role=user.role, permissions=permissions)


@router.get("/me", response_model=UserRead)
def me(claims: Claims, service: Service) -> UserRead:
    try:
        user = service.get_user(claims["sub"])
        return UserRead.model_validate(user)
    except ClearanceError as exc:
        _handle_identity_error(exc)
        raise
