"""Creation and migration of tenant schemas."""

import logging
import re

from sqlalchemy import Engine, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateSchema, DropSchema

from schemagate.core.exceptions import SchemaProvisioningFailed
from schemagate.models.base import TenantBase, TENANT_SCHEMA
# Registers the tenant tables on TenantBase.metadata
from schemagate.models import tenant_tables  # noqa: F401

logger = logging.getLogger(__name__)

# Postgres identifier limit is 63 bytes; names are interpolated into DDL
SCHEMA_NAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")


def validate_schema_name(schema_name: str) -> str:
    """
    Ensure a schema name is a safe, unquoted-compatible identifier.

    Raises:
        ValueError: If the name is not lower-case [a-z0-9_] up to 63 chars
    """
    if not schema_name or not SCHEMA_NAME_PATTERN.match(schema_name):
        raise ValueError(f"Invalid schema name: {schema_name!r}")
    if schema_name in ("public", "information_schema", TENANT_SCHEMA) or schema_name.startswith("pg_"):
        raise ValueError(f"Reserved schema name: {schema_name!r}")
    return schema_name


class SchemaProvisioner:
    """
    Creates a tenant schema and applies the tenant-scoped migrations.

    Provisioning is idempotent: the schema and every table are created
    with "if not exists" semantics, so running it again for the same
    schema is a no-op. A failure removes a schema created by the same
    call and is reported as SchemaProvisioningFailed.

    On SQLite (tests, local development) a schema is an attached
    in-memory database, which requires a single shared connection
    (StaticPool).
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    @property
    def _is_sqlite(self) -> bool:
        return self.engine.dialect.name == "sqlite"

    def schema_exists(self, schema_name: str) -> bool:
        with self.engine.connect() as conn:
            if self._is_sqlite:
                rows = conn.exec_driver_sql("PRAGMA database_list").fetchall()
                return any(row[1] == schema_name for row in rows)
            return inspect(conn).has_schema(schema_name)

    def provision(self, schema_name: str) -> None:
        """
        Create the schema if missing and migrate every tenant table into it.

        Args:
            schema_name: Target schema

        Raises:
            SchemaProvisioningFailed: On invalid name, missing privileges or
                migration error
        """
        try:
            validate_schema_name(schema_name)
        except ValueError as e:
            raise SchemaProvisioningFailed(schema_name, str(e))

        try:
            existed = self.schema_exists(schema_name)
        except SQLAlchemyError as e:
            raise SchemaProvisioningFailed(schema_name, str(e)) from e

        try:
            self._create_schema(schema_name)
            self._run_migrations(schema_name)
        except SQLAlchemyError as e:
            logger.error("Provisioning of schema %s failed: %s", schema_name, e)
            if not existed:
                self._discard_schema(schema_name)
            raise SchemaProvisioningFailed(schema_name, str(e)) from e

        logger.info(
            "Schema %s provisioned (%s)", schema_name, "verified" if existed else "created"
        )

    def drop(self, schema_name: str) -> None:
        """Drop a tenant schema with everything in it"""
        validate_schema_name(schema_name)
        if self._is_sqlite:
            if self.schema_exists(schema_name):
                with self.engine.connect() as conn:
                    conn.exec_driver_sql(f'DETACH DATABASE "{schema_name}"')
            return
        with self.engine.begin() as conn:
            conn.execute(DropSchema(schema_name, cascade=True, if_exists=True))

    def _create_schema(self, schema_name: str) -> None:
        if self._is_sqlite:
            if not self.schema_exists(schema_name):
                with self.engine.connect() as conn:
                    conn.exec_driver_sql(f"ATTACH DATABASE ':memory:' AS \"{schema_name}\"")
            return
        with self.engine.begin() as conn:
            conn.execute(CreateSchema(schema_name, if_not_exists=True))

    def _run_migrations(self, schema_name: str) -> None:
        with self.engine.begin() as conn:
            tenant_conn = conn.execution_options(schema_translate_map={TENANT_SCHEMA: schema_name})
            TenantBase.metadata.create_all(bind=tenant_conn, checkfirst=True)

    def _discard_schema(self, schema_name: str) -> None:
        try:
            self.drop(schema_name)
            logger.info("Removed partially provisioned schema %s", schema_name)
        except SQLAlchemyError:
            logger.exception("Could not remove partially provisioned schema %s", schema_name)
