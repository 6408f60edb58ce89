"""initial kv schema

Revision ID: initial_kv_schema
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'initial_kv_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Plain values
    op.create_table('kv_entries',
        sa.Column('key', sa.String(length=512), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('key')
    )

    # Unordered sets
    op.create_table('kv_set_members',
        sa.Column('key', sa.String(length=512), nullable=False),
        sa.Column('member', sa.String(length=512), nullable=False),
        sa.PrimaryKeyConstraint('key', 'member')
    )

    # Sorted sets, scanned by (key, score)
    op.create_table('kv_sorted_set_members',
        sa.Column('key', sa.String(length=512), nullable=False),
        sa.Column('member', sa.String(length=512), nullable=False),
        sa.Column('score', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('key', 'member')
    )
    op.create_index('idx_kv_zset_key_score', 'kv_sorted_set_members', ['key', 'score'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_kv_zset_key_score', table_name='kv_sorted_set_members')
    op.drop_table('kv_sorted_set_members')
    op.drop_table('kv_set_members')
    op.drop_table('kv_entries')
