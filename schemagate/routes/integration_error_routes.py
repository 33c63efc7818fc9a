from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from schemagate.database import get_db
from schemagate.dependencies import get_sync_worker, get_tenant_context
from schemagate.models.integration_error import IntegrationErrorStatus, SyncOperation
from schemagate.models.tenant_context import TenantContext
from schemagate.services.integration_error_service import IntegrationErrorService
from schemagate.services.sync_service import SyncWorker
from schemagate.schemas.integration_error_schemas import (
    IntegrationErrorResponse,
    IntegrationErrorListResponse,
    IntegrationErrorStatsResponse,
    RetryAcceptedResponse,
)

router = APIRouter()


@router.get("", response_model=IntegrationErrorListResponse)
def list_integration_errors(
    status_filter: IntegrationErrorStatus | None = Query(None, alias="status"),
    service: str | None = Query(None),
    operation: SyncOperation | None = Query(None),
    retryable_only: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """List the current tenant's integration errors, newest first"""
    return IntegrationErrorService(db).list_errors(
        context.tenant_id,
        status=status_filter,
        service=service,
        operation=operation,
        retryable_only=retryable_only,
        page=page,
        limit=limit,
    )


@router.get("/stats", response_model=IntegrationErrorStatsResponse)
def get_integration_error_stats(
    recent: int = Query(10, ge=0, le=100),
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """Counts by status, service and operation plus the most recent errors"""
    return IntegrationErrorService(db).get_stats(context.tenant_id, recent_limit=recent)


@router.get("/{error_id}", response_model=IntegrationErrorResponse)
def get_integration_error(
    error_id: int,
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """Get one integration error of the current tenant"""
    return IntegrationErrorService(db).get_error(context.tenant_id, error_id)


@router.post(
    "/{error_id}/retry",
    response_model=RetryAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def retry_integration_error(
    error_id: int,
    reopen: bool = Query(False, description="Reset a resolved or failed record before retrying"),
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
    worker: SyncWorker = Depends(get_sync_worker),
):
    """
    Retry a failed synchronization.

    - The record moves to processing before this returns
    - The attempt itself runs in the background
    - 409 if the record is processing, resolved, failed (without reopen)
      or out of retries
    """
    error, _ = worker.retry(db, context.tenant_id, error_id, reopen=reopen)
    return {
        "error_id": error.id,
        "status": error.status,
        "retry_count": error.retry_count,
        "max_retries": error.max_retries,
    }


@router.post("/{error_id}/resolve", response_model=IntegrationErrorResponse)
def resolve_integration_error(
    error_id: int,
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    """Mark an integration error as resolved by hand"""
    return IntegrationErrorService(db).resolve(context.tenant_id, error_id)
