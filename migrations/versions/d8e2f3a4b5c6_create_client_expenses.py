"""create client expenses

Revision ID: d8e2f3a4b5c6
Revises: c7d1e2f3a4b5
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'd8e2f3a4b5c6'
down_revision: Union[str, None] = 'c7d1e2f3a4b5'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'client_expenses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('client_company_id', sa.Integer(), nullable=False, index=True),
        sa.Column('project_id', sa.Integer(), nullable=True),
        sa.Column('creator_user_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.String(255), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('expense_date', sa.Date(), nullable=False),
        sa.Column('category', sa.String(64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_reimbursable', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('is_reimbursed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('reimbursed_date', sa.Date(), nullable=True),
        sa.Column('client_invoice_line_id', sa.Integer(), nullable=True, index=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('deleted_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint('amount >= 0', name='ck_client_expense_amount_non_negative'),
    )
    op.create_index(
        'ix_client_expense_client_date', 'client_expenses', ['client_company_id', 'expense_date']
    )


def downgrade() -> None:
    op.drop_index('ix_client_expense_client_date', table_name='client_expenses')
    op.drop_table('client_expenses')
