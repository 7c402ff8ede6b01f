"""Create flag_documents table

Revision ID: 001_flag_documents
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = '001_flag_documents'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # One row per (app, env) tenant, keyed "v1:<app>:<env>"
    op.create_table(
        'flag_documents',
        sa.Column('key', sa.Text(), primary_key=True, nullable=False),
        sa.Column('value', JSONB(), nullable=False, server_default=sa.text("'{\"flags\": {}, \"segments\": {}}'::jsonb")),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('version > 0', name='ck_flag_documents_version_positive'),
    )

    op.create_index('idx_flag_documents_updated_at', 'flag_documents', ['updated_at'])


def downgrade() -> None:
    op.drop_index('idx_flag_documents_updated_at', table_name='flag_documents')
    op.drop_table('flag_documents')
