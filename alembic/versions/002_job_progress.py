"""import job progress snapshot

Revision ID: 002
Revises: 001
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column('import_jobs', sa.Column('progress', postgresql.JSONB(), nullable=True))


def downgrade() -> None:
    op.drop_column('import_jobs', 'progress')
