import logging
import math
import re
import unicodedata
import uuid

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from schemagate.config import settings
from schemagate.core.exceptions import (
    ConflictException,
    NotFoundException,
    SchemaProvisioningFailed,
    ValidationException,
)
from schemagate.models.tenant import Tenant
from schemagate.models.tenant_tables import Contract, MonitoredObject, TenantUser
from schemagate.repositories.tenant_repository import TenantRepository
from schemagate.schemas.tenant_schemas import TenantCreate, TenantUpdate
from schemagate.services.schema_cache import SchemaConnectionCache, TenantHandle
from schemagate.services.schema_provisioner import SchemaProvisioner, validate_schema_name

logger = logging.getLogger(__name__)

# Postgres identifiers are limited to 63 bytes
MAX_SCHEMA_NAME_LENGTH = 63

# Columns that an explicit null in an update leaves untouched
REQUIRED_FIELDS = {"name", "max_users", "max_objects", "storage_quota", "language", "timezone", "currency"}


def slugify(value: str) -> str:
    """Lower-case ASCII slug with underscores, empty if nothing usable remains"""
    ascii_value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "_", ascii_value.lower()).strip("_")


def normalize_domain(domain: str | None) -> str | None:
    """Lower-cased host name, None when blank"""
    if domain is None:
        return None
    return domain.strip().lower() or None


def derive_schema_name(name: str, tenant_id: uuid.UUID, slug: str | None = None) -> str:
    """
    Build the schema name for a new tenant.

    Uses the explicit slug, else the slugified company name, else the
    first 12 hex digits of the tenant id (e.g. names in Cyrillic).
    """
    prefix = settings.TENANT_SCHEMA_PREFIX
    base = slugify(slug or name) or tenant_id.hex[:12]
    return (prefix + base)[:MAX_SCHEMA_NAME_LENGTH].rstrip("_")


class TenantService:
    """
    Tenant lifecycle: onboarding, administrative updates, activation and
    soft deletion. Every change that affects routing invalidates the
    tenant's cached handle.
    """

    def __init__(self, db: Session, provisioner: SchemaProvisioner, cache: SchemaConnectionCache):
        self.db = db
        self.repo = TenantRepository(db)
        self.provisioner = provisioner
        self.cache = cache

    def list_tenants(
        self,
        search: str | None = None,
        is_active: bool | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        """List tenants with pagination metadata"""
        tenants, total = self.repo.get_all(
            search=search, is_active=is_active, offset=(page - 1) * limit, limit=limit
        )
        return {
            "companies": tenants,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    def get_tenant(self, tenant_id: uuid.UUID) -> Tenant:
        """
        Raises:
            NotFoundException: If tenant not found or soft-deleted
        """
        tenant = self.repo.get_by_id(tenant_id)
        if not tenant:
            raise NotFoundException("Tenant not found")
        return tenant

    def create_tenant(self, data: TenantCreate) -> Tenant:
        """
        Onboard a company: insert the catalog row, then provision its schema.

        The two steps cannot share a transaction, so the row is inserted
        inactive and only activated once its schema exists; a provisioning
        failure is compensated by deleting the row just inserted.

        Raises:
            ValidationException: If no valid schema name can be derived
            ConflictException: If the schema name or domain is taken
            SchemaProvisioningFailed: If the schema could not be provisioned
                (the tenant row has been removed)
        """
        tenant_id = uuid.uuid4()
        schema_name = derive_schema_name(data.name, tenant_id, data.schema_slug)
        try:
            validate_schema_name(schema_name)
        except ValueError as e:
            raise ValidationException(str(e))

        if self.repo.get_by_schema_name(schema_name, include_deleted=True):
            raise ConflictException(f"Schema name '{schema_name}' is already in use")
        domain = normalize_domain(data.domain)
        if domain and self.repo.get_by_domain(domain):
            raise ConflictException(f"Domain '{domain}' is already in use")

        tenant = Tenant(
            id=tenant_id,
            name=data.name,
            schema_name=schema_name,
            domain=domain,
            contact_email=data.contact_email,
            contact_phone=data.contact_phone,
            contact_person=data.contact_person,
            address=data.address,
            city=data.city,
            country=data.country or "Russia",
            is_active=False,
            max_users=data.max_users or settings.DEFAULT_MAX_USERS,
            max_objects=data.max_objects or settings.DEFAULT_MAX_OBJECTS,
            storage_quota=data.storage_quota or settings.DEFAULT_STORAGE_QUOTA_MB,
            language=data.language or "ru",
            timezone=data.timezone or "Europe/Moscow",
            currency=data.currency or "RUB",
        )
        try:
            tenant = self.repo.create(tenant)
        except IntegrityError:
            self.db.rollback()
            raise ConflictException(f"Schema name '{schema_name}' or domain is already in use")

        try:
            self.provisioner.provision(schema_name)
        except SchemaProvisioningFailed:
            self._compensate_onboarding(tenant)
            raise

        # Routable only once its schema exists
        tenant.is_active = True
        tenant = self.repo.update(tenant)
        logger.info("Tenant %s onboarded with schema %s", tenant.id, schema_name)
        return tenant

    def update_tenant(self, tenant_id: uuid.UUID, data: TenantUpdate) -> Tenant:
        """
        Update name, domain, contacts, quotas or locale.

        Raises:
            NotFoundException: If tenant not found
            ConflictException: If the new domain belongs to another tenant
        """
        tenant = self.get_tenant(tenant_id)
        changes = data.model_dump(exclude_unset=True)

        if "domain" in changes:
            changes["domain"] = normalize_domain(changes["domain"])
        domain = changes.get("domain")
        if domain:
            owner = self.repo.get_by_domain(domain)
            if owner and owner.id != tenant.id:
                raise ConflictException(f"Domain '{domain}' is already in use")

        for field, value in changes.items():
            if value is None and field in REQUIRED_FIELDS:
                continue
            setattr(tenant, field, value)

        try:
            tenant = self.repo.update(tenant)
        except IntegrityError:
            self.db.rollback()
            raise ConflictException(f"Domain '{domain}' is already in use")
        self.cache.invalidate(tenant.id)
        return tenant

    def set_active(self, tenant_id: uuid.UUID, is_active: bool) -> Tenant:
        """
        Activate or deactivate a tenant.

        Deactivation evicts the cached handle in the same operation, so no
        request can be routed with a handle obtained before the change.
        """
        tenant = self.get_tenant(tenant_id)
        tenant.is_active = is_active
        tenant = self.repo.update(tenant)
        self.cache.invalidate(tenant.id)
        logger.info("Tenant %s %s", tenant.id, "activated" if is_active else "deactivated")
        return tenant

    def delete_tenant(self, tenant_id: uuid.UUID) -> None:
        """
        Soft delete a tenant whose schema holds no users or objects.

        Raises:
            NotFoundException: If tenant not found
            ConflictException: If business rows still exist
        """
        tenant = self.get_tenant(tenant_id)
        usage = self._count_usage(tenant)
        if usage["users_count"] or usage["objects_count"]:
            raise ConflictException(
                f"Cannot delete tenant with active users ({usage['users_count']}) "
                f"or objects ({usage['objects_count']})"
            )
        self.repo.soft_delete(tenant)
        self.cache.invalidate(tenant.id)
        logger.info("Tenant %s soft-deleted", tenant.id)

    def get_usage(self, tenant_id: uuid.UUID) -> dict:
        """Counts of business rows in the tenant schema plus quotas"""
        tenant = self.get_tenant(tenant_id)
        return {
            "tenant_id": tenant.id,
            "schema_name": tenant.schema_name,
            **self._count_usage(tenant),
            "max_users": tenant.max_users,
            "max_objects": tenant.max_objects,
            "storage_quota": tenant.storage_quota,
        }

    def _count_usage(self, tenant: Tenant) -> dict:
        if not self.provisioner.schema_exists(tenant.schema_name):
            return {"users_count": 0, "objects_count": 0, "contracts_count": 0}
        # Uncached handle: admin reads must not populate the routing cache
        handle = TenantHandle(self.provisioner.engine, tenant.schema_name)
        with handle.session() as session:
            return count_tenant_rows(session)

    def _compensate_onboarding(self, tenant: Tenant) -> None:
        logger.error("Onboarding of tenant %s failed, removing catalog row", tenant.id)
        try:
            self.repo.delete(tenant)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Compensation failed: tenant row %s could not be removed", tenant.id)


def count_tenant_rows(session: Session) -> dict:
    """Count users, objects and contracts through a schema-bound session"""
    return {
        "users_count": session.scalar(select(func.count()).select_from(TenantUser)),
        "objects_count": session.scalar(select(func.count()).select_from(MonitoredObject)),
        "contracts_count": session.scalar(select(func.count()).select_from(Contract)),
    }
