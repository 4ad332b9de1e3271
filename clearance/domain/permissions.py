from __future__ import annotations

from typing import Any

from clearance.domain.models import UserRole
from clearance.domain.state_machine import Department

PERM_WILDCARD = "*"
PERM_PROFILE_WRITE = "profile.write"
PERM_DOCUMENT_WRITE = "document.write"
PERM_PAYMENT_WRITE = "payment.write"
PERM_DRONE_WRITE = "drone.write"
PERM_FLIGHT_READ = "flight.read"
PERM_FLIGHT_WRITE = "flight.write"
PERM_REVIEW_READ = "review.read"
PERM_REVIEW_WRITE = "review.write"
PERM_IDENTITY_READ = "identity.read"
PERM_IDENTITY_WRITE = "identity.write"
PERM_AUDIT_READ = "audit.read"

_PILOT_PERMISSIONS = [
    PERM_PROFILE_WRITE,
    PERM_DOCUMENT_WRITE,
    PERM_PAYMENT_WRITE,
    PERM_DRONE_WRITE,
    PERM_FLIGHT_READ,
    PERM_FLIGHT_WRITE,
]

_REVIEWER_PERMISSIONS = [
    PERM_FLIGHT_READ,
    PERM_REVIEW_READ,
    PERM_REVIEW_WRITE,
]

ROLE_PERMISSIONS: dict[UserRole, list[str]] = {
    UserRole.PILOT: _PILOT_PERMISSIONS,
    UserRole.AIR_DEFENSE: _REVIEWER_PERMISSIONS,
    UserRole.LOGISTICS: _REVIEWER_PERMISSIONS,
    UserRole.INTELLIGENCE: _REVIEWER_PERMISSIONS,
    UserRole.ADMIN: [PERM_WILDCARD],
    UserRole.PUBLIC: [],
}

REVIEWER_ROLES = frozenset({UserRole.AIR_DEFENSE, UserRole.LOGISTICS, UserRole.INTELLIGENCE})


def permissions_for_role(role: UserRole) -> list[str]:
    return list(ROLE_PERMISSIONS.get(role, []))


def department_for_role(role: UserRole) -> Department | None:
    if role not in REVIEWER_ROLES:
        return None
    return Department(role.value)


def can_review_department(role: UserRole, department: Department) -> bool:
    if role == UserRole.ADMIN:
        return True
    return department_for_role(role) == department


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions
