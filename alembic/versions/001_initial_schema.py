"""initial schema - create all tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Organisations carry balances and an optimistic-locking version
    op.create_table(
        'organisations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('domain', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('address', sa.String(500), nullable=True),
        sa.Column('employer_id', sa.String(36), nullable=True),
        sa.Column('earned_credits', sa.Numeric(14, 4), nullable=False, server_default='0'),
        sa.Column('tradable_credits', sa.Numeric(14, 4), nullable=False, server_default='0'),
        sa.Column('cash_balance', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.CheckConstraint('tradable_credits >= 0', name='ck_organisations_tradable_non_negative'),
        sa.CheckConstraint('cash_balance >= 0', name='ck_organisations_cash_non_negative'),
    )

    # Users (role as VARCHAR, not enum)
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('domain', sa.String(255), nullable=False, index=True),
        sa.Column('organisation_id', sa.String(36), sa.ForeignKey('organisations.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='EMPLOYEE'),
        sa.Column('approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('earned_credits', sa.Numeric(14, 4), nullable=False, server_default='0'),
        sa.Column('deactivated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deactivated_by', sa.String(36), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )

    op.create_table(
        'trips',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('transport_mode', sa.String(50), nullable=False),
        sa.Column('distance_km', sa.Numeric(10, 2), nullable=False),
        sa.Column('carbon_credits', sa.Numeric(14, 4), nullable=False),
        sa.Column('rejected', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('trip_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )

    # Credit transactions (status as VARCHAR)
    op.create_table(
        'credit_transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('seller_org_id', sa.String(36), sa.ForeignKey('organisations.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('seller_org_name', sa.String(255), nullable=False),
        sa.Column('buyer_org_id', sa.String(36), sa.ForeignKey('organisations.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('buyer_org_name', sa.String(255), nullable=True),
        sa.Column('credit_amount', sa.Numeric(14, 4), nullable=False),
        sa.Column('price', sa.Numeric(14, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING', index=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.CheckConstraint('seller_org_id <> buyer_org_id', name='ck_credit_transactions_no_self_trade'),
    )

    op.create_table(
        'pending_registrations',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('kind', sa.String(20), nullable=False, index=True),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('domain', sa.String(255), nullable=False, index=True),
        sa.Column('organisation_name', sa.String(255), nullable=True),
        sa.Column('address', sa.String(500), nullable=True),
        sa.Column('organisation_id', sa.String(36), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )


def downgrade() -> None:
    op.drop_table('pending_registrations')
    op.drop_table('credit_transactions')
    op.drop_table('trips')
    op.drop_table('users')
    op.drop_table('organisations')
