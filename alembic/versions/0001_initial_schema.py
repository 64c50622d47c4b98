"""Initial schema: property cache, bids and import jobs.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the four aggregator tables."""

    # =========================================================================
    # Table: property_cache
    # =========================================================================
    op.create_table(
        'property_cache',
        sa.Column('id', sa.String(32), nullable=False),
        sa.Column('pin', sa.String(18), nullable=False),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('error_code', sa.String(32), nullable=True),
        sa.Column('fetched_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.current_timestamp()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_property_cache_pin', 'property_cache', ['pin'])
    op.create_index('ux_property_cache_pin_source', 'property_cache', ['pin', 'source'], unique=True)
    op.create_index('ix_property_cache_fetched_at', 'property_cache', ['fetched_at'])

    # =========================================================================
    # Table: pin_bids
    # =========================================================================
    op.create_table(
        'pin_bids',
        sa.Column('pin', sa.String(18), nullable=False),
        sa.Column('bid', sa.String(32), nullable=True),
        sa.Column('overbid', sa.String(32), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.current_timestamp()),
        sa.PrimaryKeyConstraint('pin'),
    )

    # =========================================================================
    # Table: import_jobs
    # =========================================================================
    op.create_table(
        'import_jobs',
        sa.Column('id', sa.String(32), nullable=False),
        sa.Column('filename', sa.String(255), nullable=True),
        sa.Column('total_pins', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_pins', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_pins', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.current_timestamp()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.current_timestamp()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_import_jobs_status', 'import_jobs', ['status'])

    # =========================================================================
    # Table: import_pins
    # =========================================================================
    op.create_table(
        'import_pins',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.String(32), nullable=False),
        sa.Column('pin', sa.String(18), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('fetched_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['job_id'], ['import_jobs.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_import_pins_job_id', 'import_pins', ['job_id'])
    op.create_index('ix_import_pins_pin', 'import_pins', ['pin'])
    op.create_index('ux_import_pins_job_pin', 'import_pins', ['job_id', 'pin'], unique=True)
    op.create_index('ix_import_pins_job_status', 'import_pins', ['job_id', 'status'])


def downgrade() -> None:
    """Drop the aggregator tables."""
    op.drop_table('import_pins')
    op.drop_table('import_jobs')
    op.drop_table('pin_bids')
    op.drop_table('property_cache')
