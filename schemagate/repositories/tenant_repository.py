"""Repository for Tenant model operations (the TenantStore)."""

import uuid

from sqlalchemy import or_
from sqlalchemy.orm import Session

from schemagate.models.base import utcnow
from schemagate.models.tenant import Tenant


class TenantRepository:
    """Repository for Tenant model operations. Soft-deleted rows are never returned."""

    def __init__(self, db: Session):
        self.db = db

    def _live(self):
        return self.db.query(Tenant).filter(Tenant.deleted_at.is_(None))

    def get_by_id(self, tenant_id: uuid.UUID) -> Tenant | None:
        """
        Get tenant by ID.

        Args:
            tenant_id: Tenant UUID

        Returns:
            Tenant object or None if not found or soft-deleted
        """
        return self._live().filter(Tenant.id == tenant_id).first()

    def get_by_schema_name(self, schema_name: str, include_deleted: bool = False) -> Tenant | None:
        """
        Get tenant owning a schema.

        Schema names stay reserved after soft deletion, so uniqueness
        checks pass include_deleted=True.
        """
        query = self.db.query(Tenant) if include_deleted else self._live()
        return query.filter(Tenant.schema_name == schema_name).first()

    def get_by_domain(self, domain: str) -> Tenant | None:
        """Get tenant by its configured domain"""
        return self._live().filter(Tenant.domain == domain).first()

    def get_all(
        self,
        search: str | None = None,
        is_active: bool | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[Tenant], int]:
        """
        List tenants, newest first.

        Args:
            search: Case-insensitive match on name, contact email or city
            is_active: Filter on activation flag
            offset: Rows to skip
            limit: Page size

        Returns:
            (page of tenants, total matching rows)
        """
        query = self._live()
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(
                    Tenant.name.ilike(pattern),
                    Tenant.contact_email.ilike(pattern),
                    Tenant.city.ilike(pattern),
                )
            )
        if is_active is not None:
            query = query.filter(Tenant.is_active.is_(is_active))

        total = query.count()
        tenants = query.order_by(Tenant.created_at.desc()).offset(offset).limit(limit).all()
        return tenants, total

    def create(self, tenant: Tenant) -> Tenant:
        """
        Insert a new tenant row and commit.

        Args:
            tenant: Tenant object to create

        Returns:
            Created Tenant object with defaults populated
        """
        self.db.add(tenant)
        self.db.commit()
        self.db.refresh(tenant)
        return tenant

    def update(self, tenant: Tenant) -> Tenant:
        """Commit pending changes on a tenant"""
        self.db.commit()
        self.db.refresh(tenant)
        return tenant

    def soft_delete(self, tenant: Tenant) -> Tenant:
        """Hide a tenant and deactivate it; the schema and its rows are kept"""
        tenant.deleted_at = utcnow()
        tenant.is_active = False
        self.db.commit()
        self.db.refresh(tenant)
        return tenant

    def delete(self, tenant: Tenant) -> None:
        """
        Hard delete a tenant row.

        WARNING: Only valid as the compensation of a failed onboarding,
        when no schema and no business rows exist for the tenant.

        Args:
            tenant: Tenant object to delete
        """
        self.db.delete(tenant)
        self.db.commit()
