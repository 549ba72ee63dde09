"""Initial schema - users and plans tables

Revision ID: 001
Revises:
Create Date: 2025-10-12

WHY: Creates the users table with its billing fields and the plan catalog.
Subscription status is derived at read time, so there is no status column.
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
    """
    Create users and plans tables.

    WHY: The users table includes:
    - Basic user info (names, email, username)
    - Authorization (role enum for RBAC)
    - Billing (plan, renewal_date, paystack_subscription_id)
    - Lifecycle flags (is_active, is_deleted)
    - Audit timestamps (created_at, updated_at)
    """
    # Create enum types
    # WHY: PostgreSQL ENUMs provide type safety at the database level.
    # SQLAlchemy stores enum member names, hence the uppercase labels.
    op.execute("CREATE TYPE userrole AS ENUM ('USER', 'ADMIN', 'MODERATOR')")
    op.execute("CREATE TYPE plantier AS ENUM ('FREE', 'MONTHLY', 'YEARLY')")

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False, server_default=''),
        sa.Column('last_name', sa.String(length=100), nullable=False, server_default=''),
        sa.Column('username', sa.String(length=100), nullable=True),
        sa.Column('role', sa.Enum('USER', 'ADMIN', 'MODERATOR', name='userrole', create_type=False), nullable=False, server_default='USER'),
        sa.Column('plan', sa.Enum('FREE', 'MONTHLY', 'YEARLY', name='plantier', create_type=False), nullable=False, server_default='FREE'),
        sa.Column('renewal_date', sa.DateTime(), nullable=True),
        sa.Column('paystack_subscription_id', sa.String(length=100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
        # WHY: Free users carry no billing fields (enforced again in UserDAO)
        sa.CheckConstraint(
            "plan <> 'FREE' OR (renewal_date IS NULL AND paystack_subscription_id IS NULL)",
            name='ck_users_free_plan_has_no_billing',
        ),
    )

    # WHY: These indexes back webhook lookups (email, subscription code)
    # and the expiry sweep (plan, renewal_date)
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_plan', 'users', ['plan'])
    op.create_index('ix_users_renewal_date', 'users', ['renewal_date'])
    op.create_index('ix_users_paystack_subscription_id', 'users', ['paystack_subscription_id'], unique=True)

    op.create_table(
        'plans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('plan_name', sa.Enum('FREE', 'MONTHLY', 'YEARLY', name='plantier', create_type=False), nullable=False),
        sa.Column('display_name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='NGN'),
        sa.Column('perks', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('is_popular', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paystack_plan_code', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('plan_name'),
        sa.UniqueConstraint('paystack_plan_code'),
    )
    op.create_index('ix_plans_id', 'plans', ['id'])


def downgrade() -> None:
    """
    Drop plans and users tables.

    WHY: Allows rolling back this migration if needed.
    """
    op.drop_index('ix_plans_id', table_name='plans')
    op.drop_table('plans')

    op.drop_index('ix_users_paystack_subscription_id', table_name='users')
    op.drop_index('ix_users_renewal_date', table_name='users')
    op.drop_index('ix_users_plan', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_index('ix_users_id', table_name='users')
    op.drop_table('users')

    op.execute("DROP TYPE plantier")
    op.execute("DROP TYPE userrole")
