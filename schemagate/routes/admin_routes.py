from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from schemagate.config import settings
from schemagate.database import get_db
from schemagate.dependencies import get_schema_cache
from schemagate.services.integration_error_service import IntegrationErrorService
from schemagate.services.schema_cache import SchemaConnectionCache
from schemagate.schemas.integration_error_schemas import RequeueStaleResponse
from schemagate.schemas.tenant_schemas import CacheClearRequest, CacheClearResponse

router = APIRouter()


@router.post("/cache/clear", response_model=CacheClearResponse)
def clear_schema_cache(
    data: CacheClearRequest | None = None,
    cache: SchemaConnectionCache = Depends(get_schema_cache),
):
    """
    Drop cached schema handles.

    With a tenant_id only that tenant's handle is dropped, otherwise all
    of them. Handles are rebuilt on the next request.
    """
    if data is not None and data.tenant_id is not None:
        return {"cleared": int(cache.invalidate(data.tenant_id)), "scope": str(data.tenant_id)}
    return {"cleared": cache.invalidate_all(), "scope": "all"}


@router.post("/integration-errors/requeue-stale", response_model=RequeueStaleResponse)
def requeue_stale_integration_errors(
    older_than_seconds: int | None = Query(None, ge=0),
    db: Session = Depends(get_db),
):
    """Move records stuck in processing back to pending (all tenants)"""
    timeout = (
        settings.INTEGRATION_PROCESSING_TIMEOUT_SECONDS
        if older_than_seconds is None
        else older_than_seconds
    )
    requeued = IntegrationErrorService(db).requeue_stale(timeout)
    return {"requeued": requeued, "older_than_seconds": timeout}
