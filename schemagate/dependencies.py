from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from schemagate.config import settings
from schemagate.core.exceptions import UnauthorizedException
from schemagate.core.security import require_admin_claims
from schemagate.database import engine, get_db, SessionLocal
from schemagate.models.tenant_context import TenantContext
from schemagate.services.schema_cache import SchemaConnectionCache, build_handle_factory
from schemagate.services.schema_provisioner import SchemaProvisioner
from schemagate.services.sync_service import SyncDispatcher, SyncWorker
from schemagate.services.tenant_router import TenantRouter

security = HTTPBearer(auto_error=False)


def require_admin(credentials: HTTPAuthorizationCredentials | None = Depends(security)) -> dict:
    """
    FastAPI dependency guarding the administrative API.

    Flow:
    1. Extract token from Authorization: Bearer <token>
    2. Validate JWT using shared SECRET_KEY
    3. Require the 'role' claim to be 'admin'

    Raises:
        UnauthorizedException: If token missing, invalid or expired (401)
        ForbiddenException: If the token is not an admin token (403)
    """
    if credentials is None:
        raise UnauthorizedException("Not authenticated")
    return require_admin_claims(credentials.credentials)


@lru_cache
def get_provisioner() -> SchemaProvisioner:
    return SchemaProvisioner(engine)


@lru_cache
def get_schema_cache() -> SchemaConnectionCache:
    """Process-wide schema handle cache"""
    provisioner = get_provisioner() if settings.TENANT_PROVISION_ON_FIRST_USE else None
    return SchemaConnectionCache(
        build_handle_factory(engine, provisioner),
        max_entries=settings.SCHEMA_CACHE_MAX_ENTRIES,
    )


@lru_cache
def get_sync_dispatcher() -> SyncDispatcher:
    return SyncDispatcher(
        timeout=settings.INTEGRATION_SYNC_TIMEOUT_SECONDS,
        max_workers=settings.INTEGRATION_WORKER_THREADS,
    )


@lru_cache
def get_sync_worker() -> SyncWorker:
    return SyncWorker(
        SessionLocal,
        get_sync_dispatcher(),
        executor=ThreadPoolExecutor(
            max_workers=settings.INTEGRATION_WORKER_THREADS, thread_name_prefix="sync-worker"
        ),
        interval=settings.INTEGRATION_WORKER_INTERVAL_SECONDS,
        batch_size=settings.INTEGRATION_WORKER_BATCH_SIZE,
        processing_timeout=settings.INTEGRATION_PROCESSING_TIMEOUT_SECONDS,
    )


def get_tenant_context(
    request: Request,
    db: Session = Depends(get_db),
    cache: SchemaConnectionCache = Depends(get_schema_cache),
) -> TenantContext:
    """
    FastAPI dependency routing the request to its tenant schema.

    Flow:
    1. Take the tenant identifier from the tenant header, else from the
       bearer token claim, else from the request host
    2. Validate it against the catalog (exists, not deleted, active)
    3. Fetch or build the tenant's schema handle
    4. Return TenantContext for use in endpoints

    Raises:
        TenantIdentityMalformed, TenantNotFound: 401
        TenantInactive: 403
    """
    router = TenantRouter(cache, header_name=settings.TENANT_HEADER)
    return router.route(request, db)


def get_tenant_db(context: TenantContext = Depends(get_tenant_context)) -> Session:
    """
    FastAPI dependency for sessions bound to the current tenant schema.

    Every statement issued through this session reaches the tenant's
    tables only.
    """
    db = context.handle.session()
    try:
        yield db
    finally:
        db.close()
