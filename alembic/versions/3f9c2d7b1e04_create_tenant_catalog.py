"""create_tenant_catalog

Revision ID: 3f9c2d7b1e04
Revises:
Create Date: 2026-10-17 10:02:41.518204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c2d7b1e04'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create the shared catalog.

    Creates:
    - companies table (tenant registry, one schema per row)
    - integration_errors table (failed external syncs of all tenants)

    Tenant schemas themselves are created at onboarding by the
    application, not by this migration.
    """
    # 1. Tenant registry
    op.create_table(
        'companies',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('schema_name', sa.String(length=63), nullable=False),
        sa.Column('domain', sa.String(length=100), nullable=True),
        sa.Column('contact_email', sa.String(length=100), nullable=True),
        sa.Column('contact_phone', sa.String(length=20), nullable=True),
        sa.Column('contact_person', sa.String(length=100), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('country', sa.String(length=100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('max_users', sa.Integer(), nullable=False),
        sa.Column('max_objects', sa.Integer(), nullable=False),
        sa.Column('storage_quota', sa.Integer(), nullable=False),
        sa.Column('language', sa.String(length=5), nullable=False),
        sa.Column('timezone', sa.String(length=50), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('schema_name'),
        sa.UniqueConstraint('domain'),
    )
    op.create_index('ix_companies_deleted_at', 'companies', ['deleted_at'])

    # 2. Integration error tracker
    op.create_table(
        'integration_errors',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column(
            'operation',
            sa.Enum('CREATE', 'UPDATE', 'DELETE', name='syncoperation', native_enum=False),
            nullable=False,
        ),
        sa.Column('entity_type', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.String(length=100), nullable=False),
        sa.Column('external_id', sa.String(length=100), nullable=True),
        sa.Column('service', sa.String(length=50), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=False),
        sa.Column('error_code', sa.String(length=100), nullable=True),
        sa.Column('retryable', sa.Boolean(), nullable=False),
        sa.Column('request_data', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('max_retries', sa.Integer(), nullable=False),
        sa.Column('next_retry_at', sa.DateTime(), nullable=True),
        sa.Column('last_retry_at', sa.DateTime(), nullable=True),
        sa.Column('processing_started_at', sa.DateTime(), nullable=True),
        sa.Column(
            'status',
            sa.Enum(
                'PENDING', 'PROCESSING', 'RESOLVED', 'FAILED',
                name='integrationerrorstatus',
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_by', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['companies.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_integration_errors_tenant_id', 'integration_errors', ['tenant_id'])
    op.create_index('ix_integration_errors_entity_id', 'integration_errors', ['entity_id'])
    op.create_index('ix_integration_errors_external_id', 'integration_errors', ['external_id'])
    op.create_index('ix_integration_errors_service', 'integration_errors', ['service'])
    op.create_index('ix_integration_errors_next_retry_at', 'integration_errors', ['next_retry_at'])
    op.create_index('ix_integration_errors_status', 'integration_errors', ['status'])


def downgrade() -> None:
    """Drop the catalog. Tenant schemas are left untouched."""
    op.drop_index('ix_integration_errors_status', table_name='integration_errors')
    op.drop_index('ix_integration_errors_next_retry_at', table_name='integration_errors')
    op.drop_index('ix_integration_errors_service', table_name='integration_errors')
    op.drop_index('ix_integration_errors_external_id', table_name='integration_errors')
    op.drop_index('ix_integration_errors_entity_id', table_name='integration_errors')
    op.drop_index('ix_integration_errors_tenant_id', table_name='integration_errors')
    op.drop_table('integration_errors')
    op.drop_index('ix_companies_deleted_at', table_name='companies')
    op.drop_table('companies')
