import json
import logging
import math
import uuid
from datetime import timedelta

from sqlalchemy.orm import Session

from schemagate.config import settings
from schemagate.core.exceptions import NotFoundException, RetryRejected, SyncOperationFailed
from schemagate.models.base import utcnow
from schemagate.models.integration_error import (
    IntegrationError,
    IntegrationErrorStatus,
    ResolvedBy,
    SyncOperation,
)
from schemagate.repositories.integration_error_repository import IntegrationErrorRepository

logger = logging.getLogger(__name__)


def retry_delay(retry_count: int) -> timedelta:
    """
    Backoff before the next attempt after `retry_count` failed retries.

    base * 2^retry_count, capped at INTEGRATION_RETRY_MAX_SECONDS:
    60s, 120s, 240s, ... with the default base.
    """
    seconds = settings.INTEGRATION_RETRY_BASE_SECONDS * (2 ** retry_count)
    return timedelta(seconds=min(seconds, settings.INTEGRATION_RETRY_MAX_SECONDS))


class IntegrationErrorService:
    """
    Bookkeeping for failed external synchronizations (the error tracker).

    Owns every state transition of IntegrationError; the SyncWorker calls
    into it around the actual external calls.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = IntegrationErrorRepository(db)

    def record_failure(
        self,
        tenant_id: uuid.UUID,
        service: str,
        operation: SyncOperation,
        entity_type: str,
        entity_id: str,
        error: Exception,
        external_id: str | None = None,
        payload: dict | None = None,
        max_retries: int | None = None,
    ) -> IntegrationError:
        """
        Persist a failed sync as a new error record.

        Retryable failures start pending with the first retry scheduled;
        non-retryable failures, and failures with no retry budget, are
        recorded directly as failed.
        """
        retryable = getattr(error, "retryable", True)
        now = utcnow()
        record = IntegrationError(
            tenant_id=tenant_id,
            service=service,
            operation=operation,
            entity_type=entity_type,
            entity_id=str(entity_id),
            external_id=external_id,
            error_message=str(error) or error.__class__.__name__,
            error_code=getattr(error, "error_code", None),
            retryable=retryable,
            request_data=json.dumps(payload) if payload is not None else None,
            retry_count=0,
            max_retries=settings.INTEGRATION_MAX_RETRIES if max_retries is None else max_retries,
            status=IntegrationErrorStatus.PENDING,
            next_retry_at=now + retry_delay(0),
        )
        if not retryable or record.retries_exhausted:
            record.mark_as_failed()

        record = self.repo.create(record)
        logger.warning(
            "Recorded %s %s failure for %s %s (tenant %s): %s",
            service,
            operation.value,
            entity_type,
            entity_id,
            tenant_id,
            record.error_message,
            extra={"tenant_id": tenant_id, "error_id": record.id},
        )
        return record

    def list_errors(
        self,
        tenant_id: uuid.UUID,
        status: IntegrationErrorStatus | None = None,
        service: str | None = None,
        operation: SyncOperation | None = None,
        retryable_only: bool = False,
        page: int = 1,
        limit: int = 50,
    ) -> dict:
        """List a tenant's errors with pagination metadata"""
        items, total = self.repo.get_by_tenant(
            tenant_id,
            status=status,
            service=service,
            operation=operation,
            retryable_only=retryable_only,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return {
            "items": items,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    def get_error(self, tenant_id: uuid.UUID, error_id: int) -> IntegrationError:
        """
        Raises:
            NotFoundException: If the record does not exist for this tenant
        """
        error = self.repo.get_for_tenant(error_id, tenant_id)
        if not error:
            raise NotFoundException("Integration error not found")
        return error

    def get_stats(self, tenant_id: uuid.UUID, recent_limit: int = 10) -> dict:
        """Totals by status, service and operation plus the most recent errors"""
        by_status = self.repo.count_by(tenant_id, IntegrationError.status)
        recent = []
        if recent_limit > 0:
            recent, _ = self.repo.get_by_tenant(tenant_id, limit=recent_limit)
        return {
            "total_errors": sum(by_status.values()),
            "pending_errors": by_status.get(IntegrationErrorStatus.PENDING.value, 0),
            "processing_errors": by_status.get(IntegrationErrorStatus.PROCESSING.value, 0),
            "resolved_errors": by_status.get(IntegrationErrorStatus.RESOLVED.value, 0),
            "failed_errors": by_status.get(IntegrationErrorStatus.FAILED.value, 0),
            "errors_by_service": self.repo.count_by(tenant_id, IntegrationError.service),
            "errors_by_operation": self.repo.count_by(tenant_id, IntegrationError.operation),
            "recent_errors": recent,
        }

    def resolve(
        self,
        tenant_id: uuid.UUID,
        error_id: int,
        resolved_by: str = ResolvedBy.MANUAL_RESOLVE.value,
    ) -> IntegrationError:
        """Manual resolution, allowed from any state"""
        error = self.get_error(tenant_id, error_id)
        error.mark_as_resolved(resolved_by)
        logger.info("Integration error %s resolved by %s", error.id, resolved_by)
        return self.repo.update(error)

    def claim_for_retry(
        self,
        tenant_id: uuid.UUID,
        error_id: int,
        manual: bool = True,
        reopen: bool = False,
    ) -> IntegrationError:
        """
        Move a record to processing before its retry is dispatched.

        The processing transition is committed here, so a crash during the
        attempt leaves the record in processing for requeue_stale to find.

        Args:
            manual: Operator retry (ignores next_retry_at)
            reopen: Reset a resolved/failed record to a fresh retry budget

        Raises:
            NotFoundException: If the record does not exist for this tenant
            RetryRejected: If the state machine forbids an attempt now
        """
        error = self.get_error(tenant_id, error_id)
        now = utcnow()

        if error.status == IntegrationErrorStatus.PROCESSING:
            raise RetryRejected("Integration error is already being processed")

        if error.is_terminal:
            if not reopen:
                raise RetryRejected(
                    f"Integration error is {error.status.value}; reopen it to retry "
                    f"(retry_count={error.retry_count}, max_retries={error.max_retries})"
                )
            error.reopen(now)
            self.repo.update(error)
            logger.info("Integration error %s reopened", error.id)

        if not error.can_retry(now, ignore_schedule=manual):
            raise RetryRejected(
                f"Integration error cannot be retried (retryable={error.retryable}, "
                f"retry_count={error.retry_count}, max_retries={error.max_retries})"
            )

        if not self.repo.claim(error.id, IntegrationErrorStatus.PENDING, now):
            raise RetryRejected("Integration error was claimed by another worker")

        self.db.refresh(error)
        return error

    def claim_due(self, error_id: int) -> bool:
        """Worker-side claim of a due pending record"""
        return self.repo.claim(error_id, IntegrationErrorStatus.PENDING, utcnow())

    def complete_attempt(
        self,
        error_id: int,
        failure: SyncOperationFailed | None,
        resolved_by: str,
    ) -> IntegrationError | None:
        """
        Record the outcome of an attempt started by a claim.

        Success resolves the record. Failure increments retry_count and
        either reschedules it (pending) or closes it (failed); a call that
        never started is rescheduled without charging a retry.
        """
        error = self.repo.get_by_id(error_id)
        if error is None:
            return None
        if error.status != IntegrationErrorStatus.PROCESSING:
            # Resolved manually or requeued while the attempt was running
            logger.info(
                "Integration error %s left %s during retry, outcome discarded",
                error.id,
                error.status.value,
            )
            return error

        if failure is None:
            error.mark_as_resolved(resolved_by)
            logger.info("Integration error %s resolved by %s", error.id, resolved_by)
        elif not failure.attempted:
            error.defer(retry_delay(error.retry_count))
            logger.warning("Retry of integration error %s was not started: %s", error.id, failure)
        else:
            error.register_failed_attempt(
                message=str(failure),
                retryable=failure.retryable,
                delay=retry_delay(error.retry_count + 1),
                error_code=failure.error_code,
            )
            logger.warning(
                "Retry %d/%d of integration error %s failed: %s (now %s)",
                error.retry_count,
                error.max_retries,
                error.id,
                failure,
                error.status.value,
            )
        return self.repo.update(error)

    def requeue_stale(self, timeout_seconds: int | None = None) -> int:
        """
        Reset records stuck in processing for longer than the timeout.

        Returns:
            Number of records moved back to pending
        """
        if timeout_seconds is None:
            timeout_seconds = settings.INTEGRATION_PROCESSING_TIMEOUT_SECONDS
        now = utcnow()
        count = self.repo.requeue_stale(now - timedelta(seconds=timeout_seconds), now)
        if count:
            logger.warning("Requeued %d integration errors stuck in processing", count)
        return count

    def list_due(self, limit: int | None = None) -> list[IntegrationError]:
        return self.repo.list_due(utcnow(), limit or settings.INTEGRATION_WORKER_BATCH_SIZE)
