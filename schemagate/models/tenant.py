"""Tenant (company) model, the catalog row behind every tenant schema."""

import uuid

from sqlalchemy import Boolean, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, validates

from schemagate.models.base import Base, TimestampMixin, SoftDeleteMixin


class Tenant(Base, TimestampMixin, SoftDeleteMixin):
    """
    Multi-tenant isolation boundary.

    A tenant is a customer company whose business data (users, objects,
    contracts, installations) lives in its own database schema. The
    catalog row records which schema that is, whether the tenant may
    currently act, and its resource quotas.

    Invariants:
    - schema_name is globally unique and never changes once assigned
    - rows are soft-deleted (deleted_at) and never hard-deleted while
      the schema still holds business rows
    """

    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    schema_name: Mapped[str] = mapped_column(String(63), unique=True, nullable=False)
    domain: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True)

    # Contact information
    contact_email: Mapped[str | None] = mapped_column(String(100), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    contact_person: Mapped[str | None] = mapped_column(String(100), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Status and quotas
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    max_users: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    max_objects: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    storage_quota: Mapped[int] = mapped_column(Integer, nullable=False, default=1024)  # MB

    # Localization
    language: Mapped[str] = mapped_column(String(5), nullable=False, default="ru")
    timezone: Mapped[str] = mapped_column(String(50), nullable=False, default="Europe/Moscow")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="RUB")

    @validates("schema_name")
    def _validate_schema_name(self, key: str, value: str) -> str:
        current = self.__dict__.get("schema_name")
        if current is not None and current != value:
            raise ValueError(f"schema_name of tenant {self.id} is immutable")
        return value

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name='{self.name}', schema='{self.schema_name}')>"
