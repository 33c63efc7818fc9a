"""Tenant identity and per-request routing context."""

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from schemagate.models.tenant import Tenant

if TYPE_CHECKING:
    from schemagate.services.schema_cache import TenantHandle


@dataclass(frozen=True)
class TenantQuotas:
    """Resource quota snapshot taken at resolution time"""

    max_users: int
    max_objects: int
    storage_quota_mb: int


@dataclass(frozen=True)
class TenantIdentity:
    """
    Resolved tenant, detached from any database session.

    Produced by TenantResolver and used as the SchemaConnectionCache key.

    Attributes:
        tenant_id: Tenant UUID
        name: Human-readable company name
        schema_name: Schema holding the tenant's tables
        quotas: Quota snapshot
    """

    tenant_id: uuid.UUID
    name: str
    schema_name: str
    quotas: TenantQuotas

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> "TenantIdentity":
        return cls(
            tenant_id=tenant.id,
            name=tenant.name,
            schema_name=tenant.schema_name,
            quotas=TenantQuotas(
                max_users=tenant.max_users,
                max_objects=tenant.max_objects,
                storage_quota_mb=tenant.storage_quota,
            ),
        )


@dataclass
class TenantContext:
    """
    Routing result attached to a request.

    Attributes:
        identity: The tenant acting on this request
        handle: Cached database handle bound to the tenant's schema
    """

    identity: TenantIdentity
    handle: "TenantHandle"

    @property
    def tenant_id(self) -> uuid.UUID:
        return self.identity.tenant_id

    @property
    def schema_name(self) -> str:
        return self.identity.schema_name

    def __repr__(self) -> str:
        return f"<TenantContext(tenant_id={self.tenant_id}, schema='{self.schema_name}')>"
