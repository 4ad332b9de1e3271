from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Callable
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from clearance.domain.errors import ForbiddenError, NotFoundError, PersistenceError, ValidationFailedError
from clearance.domain.models import (
    AuditAction,
    Document,
    DocumentScanStatus,
    DocumentUpload,
    DocumentVerifyAction,
    NotificationType,
    User,
    UserRole,
    now_utc,
)
from clearance.domain.permissions import REVIEWER_ROLES
from clearance.domain.review_rules import NotificationDraft
from clearance.infra.audit import write_audit_log
from clearance.infra.db import open_session
from clearance.services.notification_service import NotificationService
from clearance.services.object_storage_service import ObjectStorageError, ObjectStorageService

logger = logging.getLogger(__name__)

MAX_DOCUMENT_BYTES = 10 * 1024 * 1024


class DocumentService:
    def __init__(
        self,
        *,
        session_factory: Callable[[], Session] | None = None,
        storage: ObjectStorageService | None = None,
        notifications: NotificationService | None = None,
    ) -> None:
        self._session_factory = session_factory or open_session
        self._storage = storage or ObjectStorageService()
        self._notifications = notifications or NotificationService(session_factory=self._session_factory)

    def _session(self) -> Session:
        return self._session_factory()

    @staticmethod
    def _decode(content_base64: str) -> bytes:
        try:
            content = base64.b64decode(content_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationFailedError("document content is not valid base64") from exc
        if not content:
            raise ValidationFailedError("document content is empty")
        if len(content) > MAX_DOCUMENT_BYTES:
            raise ValidationFailedError("document exceeds the 10 MB limit")
        return content

    def upload_document(self, actor_id: str, payload: DocumentUpload) -> Document:
        content = self._decode(payload.content_base64)
        document_id = str(uuid4())
        object_key = self._storage.build_document_key(
            user_id=actor_id,
            document_id=document_id,
            file_name=payload.file_name,
        )
        with self._session() as session:
            if session.get(User, actor_id) is None:
                raise NotFoundError("user not found")
            try:
                meta = self._storage.put_document(
                    object_key=object_key,
                    content=content,
                    content_type=payload.mime_type,
                )
            except ObjectStorageError as exc:
                raise ValidationFailedError(str(exc)) from exc
            document = Document(
                id=document_id,
                user_id=actor_id,
                document_type=payload.document_type,
                file_name=payload.file_name,
                object_key=object_key,
                file_size=meta.size_bytes,
                mime_type=payload.mime_type,
                checksum=meta.etag,
                description=payload.description,
            )
            session.add(document)
            write_audit_log(
                actor_id=actor_id,
                action=AuditAction.CREATE,
                entity_type="document",
                entity_id=document.id,
                description=f"Document uploaded: {payload.document_type.value}",
                detail={"file_name": payload.file_name, "file_size": meta.size_bytes},
                session=session,
            )
            try:
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                self._storage.delete_document(object_key=object_key)
                raise PersistenceError("failed to store document record") from exc
            session.refresh(document)
            return document

    def list_documents(self, actor_id: str) -> list[Document]:
        with self._session() as session:
            statement = (
                select(Document).where(Document.user_id == actor_id).order_by(col(Document.uploaded_at).desc())
            )
            return list(session.exec(statement).all())

    def list_pending_documents(self) -> list[Document]:
        with self._session() as session:
            statement = (
                select(Document)
                .where(Document.scan_status == DocumentScanStatus.PENDING)
                .order_by(col(Document.uploaded_at))
            )
            return list(session.exec(statement).all())

    def verify_document(
        self,
        actor_id: str,
        document_id: str,
        action: DocumentVerifyAction,
        notes: str | None = None,
    ) -> Document:
        with self._session() as session:
            reviewer = session.get(User, actor_id)
            if reviewer is None or (reviewer.role != UserRole.ADMIN and reviewer.role not in REVIEWER_ROLES):
                raise ForbiddenError("insufficient permissions to verify documents")
            document = session.get(Document, document_id)
            if document is None:
                raise NotFoundError("document not found")
            verified = action == DocumentVerifyAction.VERIFY
            document.scan_status = DocumentScanStatus.VERIFIED if verified else DocumentScanStatus.REJECTED
            document.scan_date = now_utc()
            if notes is not None:
                document.description = notes
            session.add(document)
            write_audit_log(
                actor_id=reviewer.id,
                action=AuditAction.DOCUMENT_VERIFY,
                entity_type="document",
                entity_id=document.id,
                description=(
                    f"Document {'verified' if verified else 'rejected'} by {reviewer.role.value}"
                    f"{f': {notes}' if notes else ''}"
                ),
                detail={
                    "document_type": document.document_type.value,
                    "action": action.value,
                    "reviewer_role": reviewer.role.value,
                    "notes": notes,
                },
                session=session,
            )
            session.commit()
            session.refresh(document)

        label = document.document_type.value.replace("_", " ")
        try:
            self._notifications.notify(
                NotificationDraft(
                    user_id=document.user_id,
                    type=NotificationType.SUCCESS if verified else NotificationType.ERROR,
                    title=f"Document {'Verified' if verified else 'Rejected'}",
                    message=(
                        f"Your {label} document has been {'verified' if verified else 'rejected'}"
                        f"{f': {notes}' if notes else ''}"
                    ),
                    entity_type="document",
                    entity_id=document.id,
                )
            )
        except Exception:
            logger.exception("document notification failed for %s", document.id)
        return document
