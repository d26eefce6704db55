"""Add royalty statement tables

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19

This migration adds the following tables for royalty statements:
- contacts, titles, title_authors: Authors, titles and ownership shares
- contracts, contract_tiers: Tiered rate schedules and advance state
- sales_records: Unit sales and returns per format
- lifetime_sales_state, lifetime_sales_snapshots: Title lifetime sales
- statement_runs: Batch generation runs
- statements: Immutable author statements
- advance_ledger: Advance and recoupment tracking
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '20261019_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enums
    salesformat_enum = postgresql.ENUM('physical', 'ebook', 'audiobook', name='salesformat', create_type=False)
    salesformat_enum.create(op.get_bind(), checkfirst=True)

    tiercalculationmode_enum = postgresql.ENUM('period', 'lifetime', name='tiercalculationmode', create_type=False)
    tiercalculationmode_enum.create(op.get_bind(), checkfirst=True)

    contractstatus_enum = postgresql.ENUM('active', 'terminated', 'suspended', name='contractstatus', create_type=False)
    contractstatus_enum.create(op.get_bind(), checkfirst=True)

    ledgerentrytype_enum = postgresql.ENUM('advance', 'recoupment', name='ledgerentrytype', create_type=False)
    ledgerentrytype_enum.create(op.get_bind(), checkfirst=True)

    statementrunstatus_enum = postgresql.ENUM('processing', 'completed', 'cancelled', 'failed', name='statementrunstatus', create_type=False)
    statementrunstatus_enum.create(op.get_bind(), checkfirst=True)

    statementstatus_enum = postgresql.ENUM('draft', name='statementstatus', create_type=False)
    statementstatus_enum.create(op.get_bind(), checkfirst=True)

    returnstatus_enum = postgresql.ENUM('pending', 'approved', 'rejected', name='returnstatus', create_type=False)
    returnstatus_enum.create(op.get_bind(), checkfirst=True)

    # Create contacts table
    op.create_table(
        'contacts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False, index=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    # Create titles table
    op.create_table(
        'titles',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('isbn', sa.String(20), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # Create title_authors table
    op.create_table(
        'title_authors',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('title_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('titles.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('contact_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('contacts.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('ownership_percentage', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('ownership_percentage > 0 AND ownership_percentage <= 100', name='check_ownership_percentage_range'),
        sa.UniqueConstraint('title_id', 'contact_id', name='uq_title_authors_title_contact'),
    )

    # Create contracts table
    op.create_table(
        'contracts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('contact_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('contacts.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('title_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('titles.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('tier_calculation_mode', tiercalculationmode_enum, nullable=False, server_default='period'),
        sa.Column('advance_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('advance_recouped', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('status', contractstatus_enum, nullable=False, index=True, server_default='active'),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.CheckConstraint('advance_amount >= 0', name='check_advance_amount_nonnegative'),
        sa.CheckConstraint('advance_recouped >= 0', name='check_advance_recouped_nonnegative'),
    )

    # Create contract_tiers table
    op.create_table(
        'contract_tiers',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('contract_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('contracts.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('format', salesformat_enum, nullable=False),
        sa.Column('min_quantity', sa.Integer(), nullable=False),
        sa.Column('max_quantity', sa.Integer(), nullable=True),
        sa.Column('rate', sa.Numeric(precision=5, scale=4), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('min_quantity >= 0', name='check_tier_min_quantity_nonnegative'),
        sa.CheckConstraint('max_quantity IS NULL OR max_quantity >= min_quantity', name='check_tier_max_quantity_valid'),
        sa.CheckConstraint('rate >= 0 AND rate <= 1', name='check_tier_rate_range'),
    )

    # Create sales_records table
    op.create_table(
        'sales_records',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('title_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('titles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('format', salesformat_enum, nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('revenue', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('sale_date', sa.Date(), nullable=False),
        sa.Column('return_status', returnstatus_enum, nullable=True),
        sa.Column('channel', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_sales_tenant_title_date', 'sales_records', ['tenant_id', 'title_id', 'sale_date'])

    # Create lifetime_sales_state table
    op.create_table(
        'lifetime_sales_state',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('title_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('titles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('format', salesformat_enum, nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('revenue', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('as_of', sa.Date(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.UniqueConstraint('tenant_id', 'title_id', 'format', name='uq_lifetime_state_title_format'),
    )

    # Create lifetime_sales_snapshots table
    op.create_table(
        'lifetime_sales_snapshots',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('title_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('titles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('format', salesformat_enum, nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('quantity_before', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('revenue_before', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('revenue_after', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('state_version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('tenant_id', 'title_id', 'format', 'period_start', 'period_end', name='uq_lifetime_snapshot_period'),
    )

    # Create statement_runs table
    op.create_table(
        'statement_runs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('author_ids', sa.JSON(), nullable=False),
        sa.Column('status', statementrunstatus_enum, nullable=False, index=True, server_default='processing'),
        sa.Column('results', sa.JSON(), nullable=True),
        sa.Column('success_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('skipped_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )

    # Create statements table
    op.create_table(
        'statements',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('contact_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('contacts.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('contract_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('contracts.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('title_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('titles.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('statement_run_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('statement_runs.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('status', statementstatus_enum, nullable=False, server_default='draft'),
        sa.Column('gross_royalty', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('recoupment', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('net_payable', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('calculations', sa.JSON(), nullable=False),
        sa.Column('warnings', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('tenant_id', 'contact_id', 'period_start', 'period_end', name='uq_statements_tenant_contact_period'),
    )

    # Create advance_ledger table
    op.create_table(
        'advance_ledger',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('contact_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('contacts.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('contract_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('contracts.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('entry_type', ledgerentrytype_enum, nullable=False, index=True),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('recouped_before', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('recouped_after', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('statement_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('statements.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table('advance_ledger')
    op.drop_table('statements')
    op.drop_table('statement_runs')
    op.drop_table('lifetime_sales_snapshots')
    op.drop_table('lifetime_sales_state')
    op.drop_index('idx_sales_tenant_title_date', table_name='sales_records')
    op.drop_table('sales_records')
    op.drop_table('contract_tiers')
    op.drop_table('contracts')
    op.drop_table('title_authors')
    op.drop_table('titles')
    op.drop_table('contacts')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS returnstatus')
    op.execute('DROP TYPE IF EXISTS statementstatus')
    op.execute('DROP TYPE IF EXISTS statementrunstatus')
    op.execute('DROP TYPE IF EXISTS ledgerentrytype')
    op.execute('DROP TYPE IF EXISTS contractstatus')
    op.execute('DROP TYPE IF EXISTS tiercalculationmode')
    op.execute('DROP TYPE IF EXISTS salesformat')
