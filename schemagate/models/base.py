"""Declarative bases shared by catalog and tenant-scoped models."""

from datetime import datetime, UTC

from sqlalchemy import DateTime, MetaData
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Placeholder schema of every tenant-scoped table. Tenant handles translate
# it to the real schema name at execution time.
TENANT_SCHEMA = "tenant"


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column"""
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Catalog tables living in the shared (public) schema"""

    pass


class TenantBase(DeclarativeBase):
    """Tables created inside every tenant schema by SchemaProvisioner"""

    metadata = MetaData(schema=TENANT_SCHEMA)


class TimestampMixin:
    """Audit timestamps maintained by the ORM"""

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )


class SoftDeleteMixin:
    """Rows are hidden instead of removed while dependents may exist"""

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
