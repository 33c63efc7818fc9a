"""
Tables created inside every tenant schema.

These are the tenant-scoped migrations applied by SchemaProvisioner. The
handlers that read and write them live outside this service; only the
columns needed for usage accounting are modelled here.
"""

from datetime import date
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Date, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from schemagate.models.base import TenantBase, TimestampMixin, TENANT_SCHEMA


class ContractStatus(str, PyEnum):
    """Contract lifecycle"""

    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class InstallationStatus(str, PyEnum):
    """Installation job lifecycle"""

    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TenantUser(TenantBase, TimestampMixin):
    """Company staff account"""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class MonitoredObject(TenantBase, TimestampMixin):
    """Tracked asset synchronized with the upstream monitoring system"""

    __tablename__ = "objects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    imei: Mapped[str | None] = mapped_column(String(20), nullable=True, index=True)
    external_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    installations: Mapped[list["Installation"]] = relationship(
        "Installation", back_populates="object", cascade="all, delete-orphan"
    )


class Contract(TenantBase, TimestampMixin):
    """Service contract with an end customer"""

    __tablename__ = "contracts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[ContractStatus] = mapped_column(
        Enum(ContractStatus, native_enum=False), nullable=False, default=ContractStatus.DRAFT
    )
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    monthly_amount: Mapped[float] = mapped_column(
        Numeric(precision=15, scale=2), nullable=False, default=0.00
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class Installation(TenantBase, TimestampMixin):
    """Equipment installation job on a monitored object"""

    __tablename__ = "installations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    object_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey(f"{TENANT_SCHEMA}.objects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[InstallationStatus] = mapped_column(
        Enum(InstallationStatus, native_enum=False),
        nullable=False,
        default=InstallationStatus.PLANNED,
    )
    scheduled_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    object: Mapped["MonitoredObject"] = relationship("MonitoredObject", back_populates="installations")
