import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from schemagate.config import settings
from schemagate.core.exceptions import (
    UnauthorizedException,
    NotFoundException,
    ForbiddenException,
    ValidationException,
    ConflictException,
    SchemaProvisioningFailed,
)
from schemagate.dependencies import get_sync_worker, get_tenant_context, require_admin
from schemagate.logging_config import configure_logging
from schemagate.routes import (
    admin_routes,
    current_tenant_routes,
    integration_error_routes,
    tenant_routes,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: configure logging, start the integration retry worker if enabled.
    Shutdown: stop the worker.
    """
    configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    logger.info("%s %s starting up", settings.APP_NAME, settings.APP_VERSION)

    worker = None
    if settings.INTEGRATION_WORKER_ENABLED:
        worker = app.dependency_overrides.get(get_sync_worker, get_sync_worker)()
        worker.start()

    yield

    if worker is not None:
        worker.shutdown()
    logger.info("%s shutting down", settings.APP_NAME)


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,  # Disable in production
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# CORS middleware
cors_origins = settings.cors_origins_list
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# Exception handlers
@app.exception_handler(UnauthorizedException)
async def unauthorized_exception_handler(request: Request, exc: UnauthorizedException):
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": str(exc)},
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(NotFoundException)
async def not_found_exception_handler(request: Request, exc: NotFoundException):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(ForbiddenException)
async def forbidden_exception_handler(request: Request, exc: ForbiddenException):
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": str(exc)})


@app.exception_handler(ValidationException)
async def validation_exception_handler(request: Request, exc: ValidationException):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(ConflictException)
async def conflict_exception_handler(request: Request, exc: ConflictException):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(SchemaProvisioningFailed)
async def provisioning_failed_handler(request: Request, exc: SchemaProvisioningFailed):
    logger.error("Request %s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Tenant schema could not be provisioned"},
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": settings.APP_VERSION}


# Root endpoint
@app.get("/")
async def root():
    return {
        "message": "SchemaGate API",
        "version": settings.APP_VERSION,
        "docs": "/docs" if settings.DEBUG else "Documentation disabled in production",
    }


# Administrative routers (no tenant routing)
admin_only = [Depends(require_admin)]
app.include_router(
    tenant_routes.router, prefix="/api/companies", tags=["Companies"], dependencies=admin_only
)
app.include_router(admin_routes.router, prefix="/api/admin", tags=["Admin"], dependencies=admin_only)

# Tenant-scoped routers
tenant_scoped = [Depends(get_tenant_context)]
app.include_router(
    current_tenant_routes.router, prefix="/api/tenant", tags=["Tenant"], dependencies=tenant_scoped
)
app.include_router(
    integration_error_routes.router,
    prefix="/api/integration-errors",
    tags=["Integration errors"],
    dependencies=tenant_scoped,
)
