"""1_init - Authorizations table

Revision ID: 1_init
Revises:
Create Date: 2026-10-19

Creates the authorizations table with:
- server-assigned integer id
- soft-delete column (deleted_at) with its own index
- identity uniqueness (user_id, resource_id, resource_type) among live rows only
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '1_init'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'authorizations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('resource_id', sa.String(), nullable=False),
        sa.Column('resource_type', sa.String(), nullable=False),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index(op.f('ix_authorizations_deleted_at'), 'authorizations', ['deleted_at'], unique=False)

    # Partial index: a soft-deleted grant does not block re-granting the same tuple
    op.create_index(
        'uq_authorizations_identity',
        'authorizations',
        ['user_id', 'resource_id', 'resource_type'],
        unique=True,
        postgresql_where=sa.text('deleted_at IS NULL'),
        sqlite_where=sa.text('deleted_at IS NULL'),
    )


def downgrade() -> None:
    """Drop all schema objects."""
    op.drop_index('uq_authorizations_identity', table_name='authorizations')
    op.drop_index(op.f('ix_authorizations_deleted_at'), table_name='authorizations')
    op.drop_table('authorizations')
