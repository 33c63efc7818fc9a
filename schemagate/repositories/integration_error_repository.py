"""Repository for IntegrationError model operations."""

import uuid
from datetime import datetime

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from schemagate.models.integration_error import (
    IntegrationError,
    IntegrationErrorStatus,
    SyncOperation,
)


class IntegrationErrorRepository:
    """Repository for IntegrationError model operations"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, error_id: int) -> IntegrationError | None:
        return self.db.query(IntegrationError).filter(IntegrationError.id == error_id).first()

    def get_for_tenant(self, error_id: int, tenant_id: uuid.UUID) -> IntegrationError | None:
        """Get an error record only if it belongs to the tenant"""
        return (
            self.db.query(IntegrationError)
            .filter(IntegrationError.id == error_id, IntegrationError.tenant_id == tenant_id)
            .first()
        )

    def get_by_tenant(
        self,
        tenant_id: uuid.UUID,
        status: IntegrationErrorStatus | None = None,
        service: str | None = None,
        operation: SyncOperation | None = None,
        retryable_only: bool = False,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[IntegrationError], int]:
        """
        List a tenant's errors, newest first.

        Returns:
            (page of errors, total matching rows)
        """
        query = self.db.query(IntegrationError).filter(IntegrationError.tenant_id == tenant_id)
        if status is not None:
            query = query.filter(IntegrationError.status == status)
        if service:
            query = query.filter(IntegrationError.service == service)
        if operation is not None:
            query = query.filter(IntegrationError.operation == operation)
        if retryable_only:
            query = query.filter(
                IntegrationError.retryable.is_(True),
                IntegrationError.retry_count < IntegrationError.max_retries,
            )

        total = query.count()
        items = (
            query.order_by(IntegrationError.created_at.desc(), IntegrationError.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    def count_by(self, tenant_id: uuid.UUID, column) -> dict[str, int]:
        """Group a tenant's errors by one column"""
        rows = (
            self.db.query(column, func.count(IntegrationError.id))
            .filter(IntegrationError.tenant_id == tenant_id)
            .group_by(column)
            .all()
        )
        return {getattr(key, "value", key): count for key, count in rows}

    def list_due(self, now: datetime, limit: int) -> list[IntegrationError]:
        """Pending, retryable errors whose next attempt is due (all tenants)"""
        return (
            self.db.query(IntegrationError)
            .filter(
                IntegrationError.status == IntegrationErrorStatus.PENDING,
                IntegrationError.retryable.is_(True),
                IntegrationError.retry_count < IntegrationError.max_retries,
                (IntegrationError.next_retry_at.is_(None)) | (IntegrationError.next_retry_at <= now),
            )
            .order_by(IntegrationError.next_retry_at.asc(), IntegrationError.id.asc())
            .limit(limit)
            .all()
        )

    def claim(self, error_id: int, from_status: IntegrationErrorStatus, now: datetime) -> bool:
        """
        Atomically move one record from `from_status` to processing.

        The conditional UPDATE is the lock: of two concurrent claimers
        only one sees a matched row.

        Returns:
            True if this caller owns the attempt
        """
        result = self.db.execute(
            update(IntegrationError)
            .where(IntegrationError.id == error_id, IntegrationError.status == from_status)
            .values(
                status=IntegrationErrorStatus.PROCESSING,
                processing_started_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def requeue_stale(self, started_before: datetime, now: datetime) -> int:
        """Reset records stuck in processing since before `started_before`"""
        result = self.db.execute(
            update(IntegrationError)
            .where(
                IntegrationError.status == IntegrationErrorStatus.PROCESSING,
                IntegrationError.processing_started_at < started_before,
            )
            .values(
                status=IntegrationErrorStatus.PENDING,
                processing_started_at=None,
                next_retry_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount

    def create(self, error: IntegrationError) -> IntegrationError:
        self.db.add(error)
        self.db.commit()
        self.db.refresh(error)
        return error

    def update(self, error: IntegrationError) -> IntegrationError:
        self.db.commit()
        self.db.refresh(error)
        return error
