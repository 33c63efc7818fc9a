import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-schemagate")

import threading
import time
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta, UTC

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from jose import jwt

from schemagate.config import settings
from schemagate.core.exceptions import SyncOperationFailed
from schemagate.database import get_db
from schemagate.dependencies import get_provisioner, get_schema_cache, get_sync_worker
from schemagate.models.base import Base
# Import all model classes to ensure they're registered with SQLAlchemy
from schemagate.models.tenant import Tenant
from schemagate.models.integration_error import IntegrationError, SyncOperation
from schemagate.schemas.tenant_schemas import TenantCreate
from schemagate.services.schema_cache import SchemaConnectionCache, build_handle_factory
from schemagate.services.integration_error_service import IntegrationErrorService
from schemagate.services.schema_provisioner import SchemaProvisioner
from schemagate.services.sync_service import SyncDispatcher, SyncWorker
from schemagate.services.tenant_service import TenantService
# Import FastAPI app AFTER model imports
from schemagate.main import app

# Test database (SQLite in-memory for speed)
# Use StaticPool to ensure all connections share the same in-memory database;
# tenant schemas are in-memory databases attached to that one connection
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class InlineExecutor(Executor):
    """Runs submitted work immediately so background attempts finish before the response"""

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class FakeSyncClient:
    """
    Scriptable external system.

    Args:
        failures: Number of calls that fail before calls start succeeding
            (-1 fails forever)
        retryable: Whether the raised failures are retryable
        delay: Seconds each call sleeps before answering
    """

    def __init__(self, failures: int = 0, retryable: bool = True, delay: float = 0.0):
        self.failures = failures
        self.retryable = retryable
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def _call(self, operation, job):
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.calls.append((operation, job.entity_id))
            if self.failures == 0:
                return
            if self.failures > 0:
                self.failures -= 1
        raise SyncOperationFailed("upstream returned 503", retryable=self.retryable, error_code="http_503")

    def create(self, job, timeout):
        self._call("create", job)

    def update(self, job, timeout):
        self._call("update", job)

    def delete(self, job, timeout):
        self._call("delete", job)


def _detach_tenant_schemas():
    provisioner = SchemaProvisioner(engine)
    with engine.connect() as conn:
        attached = [row[1] for row in conn.exec_driver_sql("PRAGMA database_list").fetchall()]
    for name in attached:
        if name not in ("main", "temp"):
            provisioner.drop(name)


@pytest.fixture(scope="function")
def db_session():
    """Create fresh catalog for each test"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        _detach_tenant_schemas()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory():
    """Catalog session factory bound to the test engine"""
    return TestingSessionLocal


@pytest.fixture
def provisioner():
    return SchemaProvisioner(engine)


@pytest.fixture
def schema_cache(provisioner):
    """Fresh handle cache provisioning on first use"""
    return SchemaConnectionCache(build_handle_factory(engine, provisioner))


@pytest.fixture
def fake_sync_client():
    return FakeSyncClient(failures=-1)


@pytest.fixture
def sync_dispatcher(fake_sync_client):
    dispatcher = SyncDispatcher(timeout=2.0)
    dispatcher.register("monitoring", fake_sync_client)
    yield dispatcher
    dispatcher.shutdown()


@pytest.fixture
def sync_worker(sync_dispatcher):
    return SyncWorker(TestingSessionLocal, sync_dispatcher, executor=InlineExecutor(), interval=0.05)


@pytest.fixture(scope="function")
def client(db_session, provisioner, schema_cache, sync_worker):
    """FastAPI test client with test database"""

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provisioner] = lambda: provisioner
    app.dependency_overrides[get_schema_cache] = lambda: schema_cache
    app.dependency_overrides[get_sync_worker] = lambda: sync_worker
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def create_test_token(
    user_id: str = "test-user-123",
    role: str | None = None,
    tenant_id=None,
    expired: bool = False,
) -> str:
    """
    Generate valid JWT token for testing.

    Args:
        user_id: User ID to embed in 'sub' claim
        role: Optional 'role' claim ("admin" for the administrative API)
        tenant_id: Optional 'tenant_id' claim
        expired: If True, create expired token

    Returns:
        Encoded JWT token
    """
    if expired:
        exp = datetime.now(UTC) - timedelta(minutes=5)
    else:
        exp = datetime.now(UTC) + timedelta(minutes=15)

    payload = {"sub": user_id, "exp": exp, "iat": datetime.now(UTC)}
    if role is not None:
        payload["role"] = role
    if tenant_id is not None:
        payload["tenant_id"] = str(tenant_id)

    token = jwt.encode(payload, settings.SECRET_KEY, algorithm="HS256")
    return token


@pytest.fixture
def admin_headers():
    """Authorization headers for the administrative API"""
    token = create_test_token(user_id="admin-1", role="admin")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def create_tenant(db_session, provisioner, schema_cache):
    """Onboard a tenant through the service (row + provisioned schema)"""

    def _create(name: str, slug: str | None = None, **fields) -> Tenant:
        service = TenantService(db_session, provisioner, schema_cache)
        return service.create_tenant(TenantCreate(name=name, schema_slug=slug, **fields))

    return _create


@pytest.fixture
def acme(create_tenant):
    return create_tenant("Acme Telematics", slug="acme", domain="acme.example.com")


@pytest.fixture
def beta(create_tenant):
    return create_tenant("Beta Logistics", slug="beta")


def tenant_headers(tenant) -> dict:
    return {settings.TENANT_HEADER: str(tenant.id)}


@pytest.fixture
def record_error(db_session):
    """Insert an integration error for a tenant directly in the catalog"""

    def _record(
        tenant,
        entity_id: str = "obj-1",
        service: str = "monitoring",
        operation: SyncOperation = SyncOperation.CREATE,
        retryable: bool = True,
        max_retries: int = 3,
    ) -> IntegrationError:
        return IntegrationErrorService(db_session).record_failure(
            tenant_id=tenant.id,
            service=service,
            operation=operation,
            entity_type="object",
            entity_id=entity_id,
            error=SyncOperationFailed("connection refused", retryable=retryable),
            payload={"name": "Truck 7"},
            max_retries=max_retries,
        )

    return _record
