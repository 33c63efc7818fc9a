import logging
import uuid

from sqlalchemy.orm import Session

from schemagate.config import settings
from schemagate.core.exceptions import TenantIdentityMalformed, TenantInactive, TenantNotFound
from schemagate.models.tenant import Tenant
from schemagate.models.tenant_context import TenantIdentity
from schemagate.repositories.tenant_repository import TenantRepository

logger = logging.getLogger(__name__)


class TenantResolver:
    """
    Turns a raw tenant identifier into a validated TenantIdentity.

    Every call reads the catalog, so a deactivation is seen by the very
    next request no matter what the schema cache holds.
    """

    def __init__(self, db: Session):
        self.repo = TenantRepository(db)

    def resolve(self, raw_identifier: str | None) -> TenantIdentity:
        """
        Resolve a tenant by its UUID.

        Args:
            raw_identifier: Header or token value

        Returns:
            Identity with schema name and quota snapshot

        Raises:
            TenantIdentityMalformed: Missing or not a UUID
            TenantNotFound: No live tenant with this id
            TenantInactive: Tenant is deactivated
        """
        tenant_id = self.parse_identifier(raw_identifier)
        return self._validate(self.repo.get_by_id(tenant_id), str(tenant_id))

    def resolve_domain(self, host: str) -> TenantIdentity:
        """
        Resolve a tenant by request host.

        Matches the configured domain first, then the first label of the
        host as a subdomain naming the tenant schema slug.

        Raises:
            TenantNotFound: No tenant owns this host
            TenantInactive: Tenant is deactivated
        """
        hostname = host.split(":", 1)[0].strip().lower()
        tenant = self.repo.get_by_domain(hostname)
        if tenant is None and "." in hostname:
            subdomain = hostname.split(".", 1)[0]
            tenant = self.repo.get_by_schema_name(f"{settings.TENANT_SCHEMA_PREFIX}{subdomain}")
        return self._validate(tenant, hostname)

    @staticmethod
    def parse_identifier(raw_identifier: str | None) -> uuid.UUID:
        if raw_identifier is None or not raw_identifier.strip():
            raise TenantIdentityMalformed("Tenant identifier is missing")
        try:
            return uuid.UUID(raw_identifier.strip())
        except ValueError:
            raise TenantIdentityMalformed(f"Malformed tenant identifier: {raw_identifier!r}")

    @staticmethod
    def _validate(tenant: Tenant | None, requested: str) -> TenantIdentity:
        if tenant is None:
            logger.info("Tenant %s not found", requested)
            raise TenantNotFound("Tenant not found")
        if not tenant.is_active:
            logger.warning("Rejected request for inactive tenant %s", tenant.id)
            raise TenantInactive("Tenant is deactivated")
        return TenantIdentity.from_tenant(tenant)
