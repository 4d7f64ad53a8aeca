"""Initial schema: roles, users, sessions, medicines, reminders

Revision ID: 3a9c1e7d5b20
Revises:
Create Date: 2026-10-19 09:12:31.402117
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3a9c1e7d5b20'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    roles = op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=100), nullable=False),
    )
    op.bulk_insert(roles, [
        {'id': 1, 'name': 'admin'},
        {'id': 2, 'name': 'user'},
    ])

    op.create_table(
        'users',
        sa.Column('id', ID, primary_key=True),
        sa.Column('name', sa.String(length=100), nullable=False, unique=True),
        sa.Column('no_hp', sa.String(length=15), nullable=False, unique=True),
        sa.Column('password', sa.String(length=255), nullable=False),
        sa.Column('roles_id', sa.Integer(), sa.ForeignKey('roles.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'sessions',
        sa.Column('id', ID, primary_key=True),
        sa.Column('token', sa.Text(), nullable=True),
        sa.Column('user_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('login_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('logout_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_refresh_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_sessions_token', 'sessions', ['token'])

    op.create_table(
        'medicines',
        sa.Column('id', ID, primary_key=True),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('medicine_image', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint('stock >= 0', name='ck_medicines_stock_non_negative'),
    )

    op.create_table(
        'reminders',
        sa.Column('id', ID, primary_key=True),
        sa.Column('user_id', sa.BigInteger(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('med_id', sa.BigInteger(), sa.ForeignKey('medicines.id'), nullable=False),
        sa.Column('quantity', sa.Integer(), server_default=sa.text('1'), nullable=False),
        sa.Column('times_taken', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('time', sa.String(length=20), nullable=False),
        sa.Column('before_meal', sa.Boolean(), nullable=False),
        sa.Column('last_taken_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint('quantity > 0', name='ck_reminders_quantity_positive'),
        sa.CheckConstraint('times_taken >= 0', name='ck_reminders_times_taken_non_negative'),
    )
    op.create_index('idx_reminders_user', 'reminders', ['user_id'])


def downgrade() -> None:
    op.drop_index('idx_reminders_user', table_name='reminders')
    op.drop_table('reminders')
    op.drop_table('medicines')
    op.drop_index('idx_sessions_token', table_name='sessions')
    op.drop_table('sessions')
    op.drop_table('users')
    op.drop_table('roles')
