"""create client billing tables

Revision ID: c7d1e2f3a4b5
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'c7d1e2f3a4b5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


HOURS = sa.Numeric(precision=10, scale=4)
MONEY = sa.Numeric(precision=10, scale=2)


def upgrade() -> None:
    op.create_table(
        'client_companies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_name', sa.String(255), nullable=False),
        sa.Column('invoice_prefix', sa.String(16), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('deleted_at', sa.TIMESTAMP(timezone=True), nullable=True),
    )

    op.create_table(
        'client_agreements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('client_company_id', sa.Integer(), nullable=False, index=True),
        sa.Column('active_date', sa.Date(), nullable=False),
        sa.Column('termination_date', sa.Date(), nullable=True),
        sa.Column('monthly_retainer_hours', HOURS, nullable=False),
        sa.Column('rollover_months', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('hourly_rate', MONEY, nullable=False),
        sa.Column('monthly_retainer_fee', MONEY, nullable=False),
        sa.Column('catch_up_threshold_hours', HOURS, nullable=False, server_default='0'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('deleted_at', sa.TIMESTAMP(timezone=True), nullable=True),
    )

    op.create_table(
        'client_time_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('client_company_id', sa.Integer(), nullable=False, index=True),
        sa.Column('project_id', sa.Integer(), nullable=True),
        sa.Column('task_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(512), nullable=False, server_default=''),
        sa.Column('minutes_worked', sa.Integer(), nullable=False),
        sa.Column('date_worked', sa.Date(), nullable=False),
        sa.Column('is_billable', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('client_invoice_line_id', sa.Integer(), nullable=True, index=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('deleted_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint('minutes_worked > 0', name='ck_client_time_entry_minutes_positive'),
    )
    op.create_index(
        'ix_client_time_entry_client_date', 'client_time_entries', ['client_company_id', 'date_worked']
    )

    op.create_table(
        'client_invoices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('client_company_id', sa.Integer(), nullable=False, index=True),
        sa.Column('invoice_number', sa.String(64), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('retainer_hours_included', HOURS, nullable=False, server_default='0'),
        sa.Column('hours_worked', HOURS, nullable=False, server_default='0'),
        sa.Column('rollover_hours_used', HOURS, nullable=False, server_default='0'),
        sa.Column('unused_hours_balance', HOURS, nullable=False, server_default='0'),
        sa.Column('negative_hours_balance', HOURS, nullable=False, server_default='0'),
        sa.Column('hours_billed_at_rate', HOURS, nullable=False, server_default='0'),
        sa.Column('starting_unused_hours', HOURS, nullable=False, server_default='0'),
        sa.Column('starting_negative_hours', HOURS, nullable=False, server_default='0'),
        sa.Column('invoice_total', MONEY, nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('issue_date', sa.Date(), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('paid_date', sa.Date(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('client_company_id', 'invoice_number', name='uq_client_invoice_number'),
    )
    op.create_index(
        'ix_client_invoice_period', 'client_invoices', ['client_company_id', 'period_start', 'period_end']
    )

    op.create_table(
        'client_invoice_lines',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('client_invoice_id', sa.Integer(), nullable=False, index=True),
        sa.Column('client_agreement_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.String(512), nullable=False),
        sa.Column('quantity', sa.String(32), nullable=False, server_default='1'),
        sa.Column('unit_price', MONEY, nullable=False, server_default='0'),
        sa.Column('line_total', MONEY, nullable=False, server_default='0'),
        sa.Column('line_type', sa.String(32), nullable=False),
        sa.Column('hours', HOURS, nullable=True),
        sa.Column('line_date', sa.Date(), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('client_invoice_lines')
    op.drop_index('ix_client_invoice_period', table_name='client_invoices')
    op.drop_table('client_invoices')
    op.drop_index('ix_client_time_entry_client_date', table_name='client_time_entries')
    op.drop_table('client_time_entries')
    op.drop_table('client_agreements')
    op.drop_table('client_companies')
