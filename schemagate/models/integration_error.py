"""Integration error record for failed asynchronous external sync."""

import uuid
from datetime import datetime, timedelta
from enum import Enum as PyEnum

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from schemagate.models.base import Base, TimestampMixin, utcnow


class IntegrationErrorStatus(str, PyEnum):
    """
    Lifecycle of a failed sync.

    pending -> processing -> resolved      (attempt succeeded)
    processing -> pending                  (attempt failed, retry scheduled)
    processing/pending -> failed           (retries exhausted or non-retryable)
    any -> resolved                        (manual resolution)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    RESOLVED = "resolved"
    FAILED = "failed"


TERMINAL_STATUSES = (IntegrationErrorStatus.RESOLVED, IntegrationErrorStatus.FAILED)


class SyncOperation(str, PyEnum):
    """Kind of change pushed to an external system"""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ResolvedBy(str, PyEnum):
    """Who closed an error record"""

    AUTO_RETRY = "auto_retry"
    MANUAL_RETRY = "manual_retry"
    MANUAL_RESOLVE = "manual_resolve"


class IntegrationError(Base, TimestampMixin):
    """
    One failed synchronization of a tenant-owned entity.

    Records are never deleted; they are kept for audit and closed by
    marking them resolved or failed.

    Invariants:
    - retry_count never exceeds max_retries
    - resolved and failed are terminal except for an explicit reopen
    """

    __tablename__ = "integration_errors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("companies.id"), nullable=False, index=True
    )

    # What failed
    operation: Mapped[SyncOperation] = mapped_column(
        Enum(SyncOperation, native_enum=False), nullable=False
    )
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    external_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    service: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Error details
    error_message: Mapped[str] = mapped_column(Text, nullable=False)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    retryable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    request_data: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON payload of the job

    # Retry bookkeeping
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    last_retry_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Status
    status: Mapped[IntegrationErrorStatus] = mapped_column(
        Enum(IntegrationErrorStatus, native_enum=False),
        nullable=False,
        default=IntegrationErrorStatus.PENDING,
        index=True,
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def can_retry(self, now: datetime | None = None, ignore_schedule: bool = False) -> bool:
        """
        Check whether a new attempt may start.

        Args:
            now: Reference time (defaults to current UTC time)
            ignore_schedule: Skip the next_retry_at check (operator retries)
        """
        if not self.retryable or self.retries_exhausted:
            return False
        if self.status != IntegrationErrorStatus.PENDING:
            return False
        if not ignore_schedule and self.next_retry_at is not None:
            return (now or utcnow()) >= self.next_retry_at
        return True

    def mark_as_processing(self, now: datetime | None = None) -> None:
        self.status = IntegrationErrorStatus.PROCESSING
        self.processing_started_at = now or utcnow()

    def mark_as_resolved(self, resolved_by: str, now: datetime | None = None) -> None:
        self.status = IntegrationErrorStatus.RESOLVED
        self.resolved_at = now or utcnow()
        self.resolved_by = resolved_by
        self.processing_started_at = None
        self.next_retry_at = None

    def mark_as_failed(self) -> None:
        self.status = IntegrationErrorStatus.FAILED
        self.processing_started_at = None
        self.next_retry_at = None

    def register_failed_attempt(
        self,
        message: str,
        retryable: bool,
        delay: timedelta,
        error_code: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """
        Record the outcome of a failed attempt.

        Moves the record to failed when retries are exhausted or the
        failure is not retryable, otherwise back to pending with
        next_retry_at pushed out by `delay`.
        """
        now = now or utcnow()
        self.retry_count = min(self.retry_count + 1, self.max_retries)
        self.last_retry_at = now
        self.error_message = message
        if error_code is not None:
            self.error_code = error_code
        self.retryable = self.retryable and retryable

        if not self.retryable or self.retries_exhausted:
            self.mark_as_failed()
        else:
            self.status = IntegrationErrorStatus.PENDING
            self.processing_started_at = None
            self.next_retry_at = now + delay

    def defer(self, delay: timedelta, now: datetime | None = None) -> None:
        """Back to pending without charging a retry (the call never started)"""
        self.status = IntegrationErrorStatus.PENDING
        self.processing_started_at = None
        self.next_retry_at = (now or utcnow()) + delay

    def reopen(self, now: datetime | None = None) -> None:
        """Operator reset of a terminal record: fresh retry budget"""
        self.retry_count = 0
        # A reopened record always gets at least one attempt
        self.max_retries = max(self.max_retries, 1)
        self.retryable = True
        self.status = IntegrationErrorStatus.PENDING
        self.next_retry_at = now or utcnow()
        self.resolved_at = None
        self.resolved_by = None

    def __repr__(self) -> str:
        return (
            f"<IntegrationError(id={self.id}, service='{self.service}', "
            f"operation={self.operation.value}, status={self.status.value})>"
        )
