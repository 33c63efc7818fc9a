import uuid
from datetime import datetime
from pydantic import BaseModel, Field

from schemagate.models.integration_error import IntegrationErrorStatus, SyncOperation


class IntegrationErrorResponse(BaseModel):
    """One failed sync record"""

    id: int
    tenant_id: uuid.UUID
    operation: SyncOperation
    entity_type: str
    entity_id: str
    external_id: str | None
    service: str
    error_message: str
    error_code: str | None
    retryable: bool
    retry_count: int
    max_retries: int
    next_retry_at: datetime | None
    last_retry_at: datetime | None
    status: IntegrationErrorStatus
    resolved_at: datetime | None
    resolved_by: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class IntegrationErrorListResponse(BaseModel):
    """Page of integration errors"""

    items: list[IntegrationErrorResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class IntegrationErrorStatsResponse(BaseModel):
    """Error counts for the current tenant"""

    total_errors: int
    pending_errors: int
    processing_errors: int
    resolved_errors: int
    failed_errors: int
    errors_by_service: dict[str, int]
    errors_by_operation: dict[str, int]
    recent_errors: list[IntegrationErrorResponse]


class RetryAcceptedResponse(BaseModel):
    """Retry claimed and dispatched in the background"""

    error_id: int
    status: IntegrationErrorStatus
    retry_count: int
    max_retries: int
    message: str = Field(default="Retry started")


class RequeueStaleResponse(BaseModel):
    requeued: int
    older_than_seconds: int
