from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from clearance.domain.state_machine import (
    Department,
    OperationalStatus,
    OverallStatus,
    ReviewDecision,
    ReviewStatus,
)


def now_utc() -> datetime:
    return datetime.now(UTC)


class UserRole(StrEnum):
    PILOT = "pilot"
    AIR_DEFENSE = "air_defense"
    LOGISTICS = "logistics"
    INTELLIGENCE = "intelligence"
    ADMIN = "admin"
    PUBLIC = "public"


class EntityType(StrEnum):
    PILOT_PROFILE = "pilot_profile"
    DRONE = "drone"
    FLIGHT = "flight"


class DepartmentReview(BaseModel):
    status: ReviewStatus = ReviewStatus.PENDING
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    notes: str | None = None


def pending_reviews() -> dict[str, Any]:
    return {department.value: DepartmentReview().model_dump(mode="json") for department in Department}


def load_reviews(raw: dict[str, Any] | None) -> dict[Department, DepartmentReview]:
    raw = raw or {}
    return {
        department: DepartmentReview.model_validate(raw.get(department.value) or {})
        for department in Department
    }


def dump_reviews(reviews: dict[Department, DepartmentReview]) -> dict[str, Any]:
    return {department.value: reviews[department].model_dump(mode="json") for department in Department}


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    APPROVE = "approve"
    REJECT = "reject"
    PAYMENT = "payment"
    DOCUMENT_VERIFY = "document_verify"
    ROLE_UPDATE = "role_update"


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"
    __table_args__ = (Index("ix_audit_logs_entity", "entity_type", "entity_id"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    action: AuditAction = Field(index=True)
    entity_type: str
    entity_id: str
    description: str
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    email: str = Field(index=True, unique=True)
    full_name: str
    phone: str | None = None
    password_hash: str
    role: UserRole = Field(default=UserRole.PILOT, index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class PilotProfile(SQLModel, table=True):
    __tablename__ = "pilot_profiles"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True, unique=True)
    full_name: str
    phone: str | None = None
    address: str
    city: str
    country: str
    postal_code: str | None = None
    license_number: str | None = None
    reviews: dict[str, Any] = Field(
        default_factory=pending_reviews,
        sa_column=Column(JSON, nullable=False),
    )
    overall_status: OverallStatus = Field(default=OverallStatus.PENDING, index=True)
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class Drone(SQLModel, table=True):
    __tablename__ = "drones"
    __table_args__ = (UniqueConstraint("serial_number", name="uq_drones_serial_number"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    pilot_id: str = Field(foreign_key="pilot_profiles.id", index=True)
    manufacturer: str
    model: str
    serial_number: str = Field(index=True)
    registration_number: str | None = None
    weight_kg: float | None = None
    max_altitude_m: float | None = None
    has_camera: bool = Field(default=False)
    has_thermal_imaging: bool = Field(default=False)
    reviews: dict[str, Any] = Field(
        default_factory=pending_reviews,
        sa_column=Column(JSON, nullable=False),
    )
    overall_status: OverallStatus = Field(default=OverallStatus.PENDING, index=True)
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class Flight(SQLModel, table=True):
    __tablename__ = "flights"
    __table_args__ = (
        Index("ix_flights_pilot_overall", "pilot_id", "overall_status"),
        Index("ix_flights_operational_status", "operational_status"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    pilot_id: str = Field(foreign_key="pilot_profiles.id", index=True)
    drone_id: str = Field(foreign_key="drones.id", index=True)
    flight_number: str = Field(index=True, unique=True)
    purpose: str
    description: str | None = None
    departure_location: str
    departure_lat: float
    departure_lng: float
    destination_location: str | None = None
    destination_lat: float | None = None
    destination_lng: float | None = None
    scheduled_start: datetime
    scheduled_end: datetime
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    max_altitude_m: float
    estimated_duration_minutes: int | None = None
    reviews: dict[str, Any] = Field(
        default_factory=pending_reviews,
        sa_column=Column(JSON, nullable=False),
    )
    overall_status: OverallStatus = Field(default=OverallStatus.PENDING, index=True)
    final_approved_at: datetime | None = None
    operational_status: OperationalStatus = Field(default=OperationalStatus.PENDING)
    current_lat: float | None = None
    current_lng: float | None = None
    current_altitude_m: float | None = None
    last_gps_update: datetime | None = None
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc, index=True)


ReviewableEntity = PilotProfile | Drone | Flight

REVIEWABLE_MODELS: dict[EntityType, type[SQLModel]] = {
    EntityType.PILOT_PROFILE: PilotProfile,
    EntityType.DRONE: Drone,
    EntityType.FLIGHT: Flight,
}


class DocumentType(StrEnum):
    NATIONAL_ID = "national_id"
    INSURANCE = "insurance"
    DRONE_REGISTRATION = "drone_registration"
    FLIGHT_PLAN = "flight_plan"
    OTHER = "other"


class DocumentScanStatus(StrEnum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class Document(SQLModel, table=True):
    __tablename__ = "documents"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    document_type: DocumentType
    file_name: str
    object_key: str
    file_size: int
    mime_type: str
    checksum: str
    scan_status: DocumentScanStatus = Field(default=DocumentScanStatus.PENDING, index=True)
    scan_date: datetime | None = None
    description: str | None = None
    uploaded_at: datetime = Field(default_factory=now_utc, index=True)


class PaymentStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Payment(SQLModel, table=True):
    __tablename__ = "payments"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    amount: float
    currency: str = Field(default="USD")
    status: PaymentStatus = Field(default=PaymentStatus.PENDING)
    payment_provider: str = Field(default="mock")
    description: str | None = None
    paid_at: datetime | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class NotificationType(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_read", "user_id", "is_read"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    type: NotificationType
    title: str
    message: str
    entity_type: str | None = None
    entity_id: str | None = Field(default=None, index=True)
    is_read: bool = Field(default=False)
    read_at: datetime | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class RegisterRequest(BaseModel):
    email: str = PydanticField(min_length=3)
    password: str = PydanticField(min_length=6)
    full_name: str
    phone: str | None = None


class BootstrapAdminRequest(BaseModel):
    email: str = PydanticField(min_length=3)
    password: str = PydanticField(min_length=6)
    full_name: str = "Administrator"


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: UserRole
    permissions: list[str]


class UserRead(ORMReadModel):
    id: str
    email: str
    full_name: str
    phone: str | None = None
    role: UserRole
    is_active: bool
    created_at: datetime
    updated_at: datetime


class RoleUpdateRequest(BaseModel):
    role: UserRole


class PilotProfileCreate(BaseModel):
    full_name: str
    phone: str | None = None
    address: str
    city: str
    country: str
    postal_code: str | None = None
    license_number: str | None = None


class PilotProfileUpdate(BaseModel):
    full_name: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    postal_code: str | None = None
    license_number: str | None = None


class PilotProfileRead(ORMReadModel):
    id: str
    user_id: str
    full_name: str
    phone: str | None = None
    address: str
    city: str
    country: str
    postal_code: str | None = None
    license_number: str | None = None
    reviews: dict[Department, DepartmentReview]
    overall_status: OverallStatus
    created_at: datetime
    updated_at: datetime


class DroneCreate(BaseModel):
    manufacturer: str
    model: str
    serial_number: str
    registration_number: str | None = None
    weight_kg: float | None = PydanticField(default=None, gt=0)
    max_altitude_m: float | None = PydanticField(default=None, gt=0)
    has_camera: bool = False
    has_thermal_imaging: bool = False


class DroneRead(ORMReadModel):
    id: str
    pilot_id: str
    manufacturer: str
    model: str
    serial_number: str
    registration_number: str | None = None
    weight_kg: float | None = None
    max_altitude_m: float | None = None
    has_camera: bool
    has_thermal_imaging: bool
    reviews: dict[Department, DepartmentReview]
    overall_status: OverallStatus
    created_at: datetime
    updated_at: datetime


class FlightCreate(BaseModel):
    drone_id: str
    purpose: str
    description: str | None = None
    departure_location: str
    departure_lat: float = PydanticField(ge=-90, le=90)
    departure_lng: float = PydanticField(ge=-180, le=180)
    destination_location: str | None = None
    destination_lat: float | None = PydanticField(default=None, ge=-90, le=90)
    destination_lng: float | None = PydanticField(default=None, ge=-180, le=180)
    scheduled_start: datetime
    scheduled_end: datetime
    max_altitude_m: float = PydanticField(gt=0)
    estimated_duration_minutes: int | None = PydanticField(default=None, gt=0)

    @field_validator("scheduled_start", "scheduled_end")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # naive timestamps are taken as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class FlightRead(ORMReadModel):
    id: str
    pilot_id: str
    drone_id: str
    flight_number: str
    purpose: str
    description: str | None = None
    departure_location: str
    departure_lat: float
    departure_lng: float
    destination_location: str | None = None
    destination_lat: float | None = None
    destination_lng: float | None = None
    scheduled_start: datetime
    scheduled_end: datetime
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    max_altitude_m: float
    estimated_duration_minutes: int | None = None
    reviews: dict[Department, DepartmentReview]
    overall_status: OverallStatus
    final_approved_at: datetime | None = None
    operational_status: OperationalStatus
    current_lat: float | None = None
    current_lng: float | None = None
    current_altitude_m: float | None = None
    last_gps_update: datetime | None = None
    created_at: datetime
    updated_at: datetime


class PositionUpdate(BaseModel):
    lat: float
    lng: float
    altitude: float | None = None


class ReviewRequest(BaseModel):
    decision: str
    notes: str | None = None
    department: str | None = None


class ReviewResult(BaseModel):
    entity_type: EntityType
    entity_id: str
    department: Department
    decision: ReviewDecision
    overall_status: OverallStatus
    reviewed_at: datetime


class DocumentUpload(BaseModel):
    document_type: DocumentType
    file_name: str
    mime_type: str = "application/octet-stream"
    content_base64: str
    description: str | None = None


class DocumentRead(ORMReadModel):
    id: str
    user_id: str
    document_type: DocumentType
    file_name: str
    file_size: int
    mime_type: str
    checksum: str
    scan_status: DocumentScanStatus
    scan_date: datetime | None = None
    description: str | None = None
    uploaded_at: datetime


class DocumentVerifyAction(StrEnum):
    VERIFY = "verify"
    REJECT = "reject"


class DocumentVerifyRequest(BaseModel):
    action: DocumentVerifyAction
    notes: str | None = None


class PaymentCreate(BaseModel):
    amount: float | None = PydanticField(default=None, gt=0)


class PaymentRead(ORMReadModel):
    id: str
    user_id: str
    amount: float
    currency: str
    status: PaymentStatus
    payment_provider: str
    description: str | None = None
    paid_at: datetime | None = None
    created_at: datetime


class NotificationRead(ORMReadModel):
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    entity_type: str | None = None
    entity_id: str | None = None
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime


class AuditLogRead(ORMReadModel):
    id: str
    actor_id: str | None = None
    action: AuditAction
    entity_type: str
    entity_id: str
    description: str
    ts: datetime
    detail: dict[str, Any]


class SystemStatsRead(BaseModel):
    users_by_role: dict[str, int]
    pilot_profiles_by_status: dict[str, int]
    drones_by_status: dict[str, int]
    flights_by_status: dict[str, int]
    active_flights: int
    total_payments: float
