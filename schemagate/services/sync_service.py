"""
Asynchronous synchronization of tenant entities with external systems.

Business handlers submit SyncJobs and return immediately; the worker
runs them on background threads and reports failures to the integration
error tracker. The same worker retries recorded failures, either on
operator request or periodically for records whose backoff has elapsed.
"""

import json
import logging
import threading
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Callable, Protocol

from sqlalchemy.orm import Session, sessionmaker

from schemagate.core.exceptions import SyncOperationFailed
from schemagate.models.integration_error import (
    IntegrationError,
    IntegrationErrorStatus,
    ResolvedBy,
    SyncOperation,
)
from schemagate.services.integration_error_service import IntegrationErrorService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncJob:
    """One change of a tenant entity to push to an external system"""

    tenant_id: uuid.UUID
    service: str
    operation: SyncOperation
    entity_type: str
    entity_id: str
    external_id: str | None = None
    payload: dict = field(default_factory=dict)

    @classmethod
    def from_error(cls, error: IntegrationError) -> "SyncJob":
        """Rebuild the job that produced an error record"""
        return cls(
            tenant_id=error.tenant_id,
            service=error.service,
            operation=error.operation,
            entity_type=error.entity_type,
            entity_id=error.entity_id,
            external_id=error.external_id,
            payload=json.loads(error.request_data) if error.request_data else {},
        )


class SyncClient(Protocol):
    """
    Client of one external system (monitoring platform, CRM, accounting).

    Implementations must honour `timeout` on their outbound calls and
    raise SyncOperationFailed with retryable=False for errors that cannot
    succeed on retry (validation, missing credentials).
    """

    def create(self, job: SyncJob, timeout: float) -> None: ...

    def update(self, job: SyncJob, timeout: float) -> None: ...

    def delete(self, job: SyncJob, timeout: float) -> None: ...


OperationCall = Callable[[SyncClient, SyncJob, float], None]

OPERATION_CALLS: dict[SyncOperation, OperationCall] = {
    SyncOperation.CREATE: lambda client, job, timeout: client.create(job, timeout=timeout),
    SyncOperation.UPDATE: lambda client, job, timeout: client.update(job, timeout=timeout),
    SyncOperation.DELETE: lambda client, job, timeout: client.delete(job, timeout=timeout),
}

_unmapped = set(SyncOperation) - set(OPERATION_CALLS)
if _unmapped:
    raise RuntimeError(f"Sync operations without a dispatch entry: {sorted(op.value for op in _unmapped)}")


class SyncDispatcher:
    """
    Registry of sync clients keyed by external service identifier.

    Every call is bounded by `timeout`; a client that does not return in
    time is reported as a retryable failure and abandoned. Each service
    runs on its own pool of `max_workers` threads, so calls hung in one
    external system never hold up calls to another.
    """

    def __init__(self, timeout: float = 30.0, max_workers: int = 4):
        self.timeout = timeout
        self.max_workers = max_workers
        self._clients: dict[str, SyncClient] = {}
        self._pools: dict[str, ThreadPoolExecutor] = {}
        self._lock = threading.Lock()

    def register(self, service: str, client: SyncClient) -> None:
        with self._lock:
            self._clients[service] = client
            if service not in self._pools:
                self._pools[service] = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix=f"sync-{service}"
                )
        logger.info("Registered sync client for %s", service)

    def unregister(self, service: str) -> None:
        with self._lock:
            self._clients.pop(service, None)
            pool = self._pools.pop(service, None)
        if pool is not None:
            pool.shutdown(wait=False, cancel_futures=True)

    @property
    def services(self) -> list[str]:
        return sorted(self._clients)

    def dispatch(self, job: SyncJob) -> None:
        """
        Run the client call for a job.

        Raises:
            SyncOperationFailed: On client error, timeout, saturation of the
                service's pool or unknown service
        """
        with self._lock:
            client = self._clients.get(job.service)
            pool = self._pools.get(job.service)
        if client is None or pool is None:
            raise SyncOperationFailed(
                f"No sync client registered for service '{job.service}'",
                retryable=False,
                error_code="unknown_service",
            )

        call = OPERATION_CALLS[job.operation]
        future = pool.submit(call, client, job, self.timeout)
        try:
            future.result(timeout=self.timeout)
        except FutureTimeoutError:
            if future.cancel():
                # Still queued: every slot is held by earlier calls
                raise SyncOperationFailed(
                    f"{job.service} {job.operation.value} not started within {self.timeout:g}s, "
                    f"all {self.max_workers} call slots busy",
                    retryable=True,
                    error_code="saturated",
                    attempted=False,
                )
            raise SyncOperationFailed(
                f"{job.service} {job.operation.value} timed out after {self.timeout:g}s",
                retryable=True,
                error_code="timeout",
            )
        except SyncOperationFailed:
            raise
        except Exception as e:
            raise SyncOperationFailed(str(e) or e.__class__.__name__, retryable=True) from e

    def shutdown(self) -> None:
        with self._lock:
            pools = list(self._pools.values())
        for pool in pools:
            pool.shutdown(wait=False, cancel_futures=True)


class SyncWorker:
    """
    Background execution of sync jobs and retries.

    Args:
        session_factory: Catalog session factory; each unit of work opens
            its own session since it outlives the request
        dispatcher: Client registry
        executor: Pool running jobs and retry attempts
        interval: Seconds between periodic passes (start/stop)
        batch_size: Maximum due records attempted per pass
        processing_timeout: Seconds after which processing records are requeued
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        dispatcher: SyncDispatcher,
        executor: Executor | None = None,
        interval: float = 30.0,
        batch_size: int = 50,
        processing_timeout: int = 900,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="sync-worker")
        self.interval = interval
        self.batch_size = batch_size
        self.processing_timeout = processing_timeout
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def submit(self, job: SyncJob) -> Future:
        """Fire a sync job; a failure is eventually recorded, never raised"""
        future = self.executor.submit(self._run_job, job)
        future.add_done_callback(_log_unexpected_failure)
        return future

    def retry(
        self, db: Session, tenant_id: uuid.UUID, error_id: int, reopen: bool = False
    ) -> tuple[IntegrationError, Future]:
        """
        Operator retry: claim now, attempt in the background.

        Raises:
            NotFoundException, RetryRejected: From the claim
        """
        error = IntegrationErrorService(db).claim_for_retry(
            tenant_id, error_id, manual=True, reopen=reopen
        )
        future = self.executor.submit(self._attempt, error.id, ResolvedBy.MANUAL_RETRY.value)
        future.add_done_callback(_log_unexpected_failure)
        return error, future

    def run_once(self) -> dict:
        """
        One periodic pass: requeue stale records, then attempt every due one.

        Returns:
            Counts of requeued, attempted and resolved records
        """
        with self.session_factory() as db:
            service = IntegrationErrorService(db)
            requeued = service.requeue_stale(self.processing_timeout)
            due_ids = [error.id for error in service.list_due(self.batch_size)]
            claimed = [error_id for error_id in due_ids if service.claim_due(error_id)]

        resolved = 0
        for error_id in claimed:
            outcome = self._attempt(error_id, ResolvedBy.AUTO_RETRY.value)
            if outcome is not None and outcome.status == IntegrationErrorStatus.RESOLVED:
                resolved += 1

        if requeued or claimed:
            logger.info(
                "Retry pass: %d requeued, %d attempted, %d resolved", requeued, len(claimed), resolved
            )
        return {"requeued": requeued, "attempted": len(claimed), "resolved": resolved}

    def start(self) -> None:
        """Run run_once every `interval` seconds on a daemon thread"""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="sync-retry-loop", daemon=True)
        self._thread.start()
        logger.info("Integration retry worker started (interval %ss)", self.interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Integration retry worker stopped")

    def shutdown(self) -> None:
        self.stop()
        self.executor.shutdown(wait=False, cancel_futures=True)
        self.dispatcher.shutdown()

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.run_once()
            except Exception:
                # The loop outlives any single failed pass
                logger.exception("Integration retry pass failed")

    def _run_job(self, job: SyncJob) -> IntegrationError | None:
        try:
            self.dispatcher.dispatch(job)
        except SyncOperationFailed as e:
            with self.session_factory() as db:
                return IntegrationErrorService(db).record_failure(
                    tenant_id=job.tenant_id,
                    service=job.service,
                    operation=job.operation,
                    entity_type=job.entity_type,
                    entity_id=job.entity_id,
                    error=e,
                    external_id=job.external_id,
                    payload=job.payload,
                )
        logger.debug("Synced %s %s to %s", job.entity_type, job.entity_id, job.service)
        return None

    def _attempt(self, error_id: int, resolved_by: str) -> IntegrationError | None:
        with self.session_factory() as db:
            service = IntegrationErrorService(db)
            error = service.repo.get_by_id(error_id)
            if error is None:
                return None
            job = SyncJob.from_error(error)

            failure = None
            try:
                self.dispatcher.dispatch(job)
            except SyncOperationFailed as e:
                failure = e
            return service.complete_attempt(error_id, failure, resolved_by)


def _log_unexpected_failure(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Background sync task crashed", exc_info=exc)
