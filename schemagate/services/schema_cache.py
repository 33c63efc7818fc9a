"""
Registry of schema-bound database handles, one per tenant.

The map is populated lazily, lives for the process lifetime and is only
cleared by explicit invalidation. Reads of a warm entry take no lock;
creation is serialized per tenant so concurrent first requests for the
same tenant build exactly one handle, and the slow part (provisioning)
never runs under the registry-wide lock.
"""

import logging
import threading
import time
import uuid
from typing import Callable

from sqlalchemy import Engine, event
from sqlalchemy.orm import Session, sessionmaker

from schemagate.models.base import TENANT_SCHEMA
from schemagate.models.tenant_context import TenantIdentity
from schemagate.services.schema_provisioner import SchemaProvisioner, validate_schema_name

logger = logging.getLogger(__name__)


class TenantHandle:
    """
    Database handle bound to one tenant schema.

    Wraps an engine view that shares the process-wide connection pool but
    translates the tenant placeholder schema to `schema_name` for every
    statement. On Postgres each transaction also pins search_path, so raw
    SQL issued through the handle stays inside the schema too.
    """

    def __init__(self, engine: Engine, schema_name: str):
        self.schema_name = validate_schema_name(schema_name)
        self.engine = engine.execution_options(schema_translate_map={TENANT_SCHEMA: schema_name})
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.created_at = time.monotonic()
        self.last_used = self.created_at

        if engine.dialect.name == "postgresql":
            event.listen(self.session_factory, "after_begin", self._pin_search_path)

    def _pin_search_path(self, session, transaction, connection) -> None:
        connection.exec_driver_sql(f'SET LOCAL search_path TO "{self.schema_name}"')

    def session(self) -> Session:
        """Open a new session routed to this schema"""
        self.touch()
        return self.session_factory()

    def touch(self) -> None:
        self.last_used = time.monotonic()

    def __repr__(self) -> str:
        return f"<TenantHandle(schema='{self.schema_name}')>"


HandleFactory = Callable[[str], TenantHandle]


def build_handle_factory(
    engine: Engine, provisioner: SchemaProvisioner | None = None
) -> HandleFactory:
    """
    Factory used by the cache on a miss.

    With a provisioner the schema is (idempotently) provisioned before the
    handle is built, which lazily creates schemas of tenants onboarded
    while the database was unreachable and adds tables introduced since.
    """

    def factory(schema_name: str) -> TenantHandle:
        if provisioner is not None:
            provisioner.provision(schema_name)
        return TenantHandle(engine, schema_name)

    return factory


class _CreationGuard:
    """Per-tenant creation lock shared by the callers currently waiting on it"""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class SchemaConnectionCache:
    """
    Concurrency-safe map of tenant id -> TenantHandle.

    Args:
        factory: Builds a handle for a schema name (may be slow)
        max_entries: 0 for unbounded, otherwise least-recently-used entries
            are evicted beyond this size
    """

    def __init__(self, factory: HandleFactory, max_entries: int = 0):
        self._factory = factory
        self._max_entries = max_entries
        self._entries: dict[uuid.UUID, TenantHandle] = {}
        # Guards _entries writes, _guards and _building
        self._lock = threading.Lock()
        # Only tenants with a creation in progress have a guard
        self._guards: dict[uuid.UUID, _CreationGuard] = {}
        # Token of the creation in progress; invalidation removes it so a
        # handle built before the invalidation is never installed
        self._building: dict[uuid.UUID, object] = {}

    def get_or_create(self, identity: TenantIdentity) -> TenantHandle:
        """
        Return the tenant's handle, building it on first use.

        Raises:
            SchemaProvisioningFailed: If the factory cannot provision the schema
        """
        tenant_id = identity.tenant_id
        handle = self._entries.get(tenant_id)
        if handle is not None and handle.schema_name == identity.schema_name:
            handle.touch()
            return handle

        with self._lock:
            guard = self._guards.setdefault(tenant_id, _CreationGuard())
            guard.users += 1

        try:
            with guard.lock:
                # Another caller may have finished while we waited
                handle = self._entries.get(tenant_id)
                if handle is not None and handle.schema_name == identity.schema_name:
                    handle.touch()
                    return handle

                token = object()
                with self._lock:
                    self._building[tenant_id] = token

                try:
                    handle = self._factory(identity.schema_name)
                except Exception:
                    with self._lock:
                        if self._building.get(tenant_id) is token:
                            del self._building[tenant_id]
                    raise

                with self._lock:
                    current = self._building.pop(tenant_id, None)
                    if current is token:
                        self._entries[tenant_id] = handle
                        self._evict_over_capacity(keep=tenant_id)

                if current is token:
                    logger.info("Cached handle for tenant %s (schema %s)", tenant_id, identity.schema_name)
                else:
                    logger.info("Tenant %s invalidated during handle creation, not caching", tenant_id)
        finally:
            with self._lock:
                guard.users -= 1
                if guard.users == 0:
                    del self._guards[tenant_id]

        return handle

    def invalidate(self, tenant_id: uuid.UUID) -> bool:
        """
        Drop a tenant's handle so the next resolution rebuilds it.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            self._building.pop(tenant_id, None)
            removed = self._entries.pop(tenant_id, None)
        if removed is not None:
            logger.info("Invalidated handle for tenant %s", tenant_id)
        return removed is not None

    def invalidate_all(self) -> int:
        """Drop every handle. Returns the number of entries removed."""
        with self._lock:
            self._building.clear()
            count = len(self._entries)
            self._entries.clear()
        logger.info("Invalidated all %d cached tenant handles", count)
        return count

    def contains(self, tenant_id: uuid.UUID) -> bool:
        return tenant_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _evict_over_capacity(self, keep: uuid.UUID) -> None:
        # Caller holds self._lock
        if not self._max_entries:
            return
        while len(self._entries) > self._max_entries:
            victim = min(
                (tid for tid in self._entries if tid != keep),
                key=lambda tid: self._entries[tid].last_used,
                default=None,
            )
            if victim is None:
                return
            del self._entries[victim]
            logger.info("Evicted least recently used handle for tenant %s", victim)
