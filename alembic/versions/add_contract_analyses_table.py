"""Add contract analyses table

Revision ID: add_contract_analyses
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'add_contract_analyses'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    jsonb = postgresql.JSONB(astext_type=sa.Text())
    op.create_table(
        'contract_analyses',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('owner_id', sa.String(length=255), nullable=False),
        sa.Column('project_id', sa.String(length=255), nullable=True),
        sa.Column('tier', sa.String(length=16), nullable=False),
        sa.Column('contract_text', sa.Text(), nullable=False),
        sa.Column('contract_type', sa.String(length=255), nullable=False),
        sa.Column('language', sa.String(length=16), nullable=False),
        sa.Column('risks', jsonb, nullable=False),
        sa.Column('opportunities', jsonb, nullable=False),
        sa.Column('summary', sa.Text(), nullable=False),
        sa.Column('overall_score', sa.Integer(), nullable=False),
        sa.Column('recommendations', jsonb, nullable=False),
        sa.Column('key_clauses', jsonb, nullable=False),
        sa.Column('legal_compliance', sa.Text(), nullable=False),
        sa.Column('negotiation_points', jsonb, nullable=False),
        sa.Column('contract_duration', sa.Text(), nullable=False),
        sa.Column('termination_conditions', sa.Text(), nullable=False),
        sa.Column('financial_terms', jsonb, nullable=False),
        sa.Column('performance_metrics', jsonb, nullable=False),
        sa.Column('specific_clauses', sa.Text(), nullable=False),
        sa.Column('expiration_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('degraded', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('feedback', jsonb, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_contract_analyses_owner_created', 'contract_analyses', ['owner_id', 'created_at'], unique=False)
    op.create_index('idx_contract_analyses_project_id', 'contract_analyses', ['project_id'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_contract_analyses_project_id', table_name='contract_analyses')
    op.drop_index('idx_contract_analyses_owner_created', table_name='contract_analyses')
    op.drop_table('contract_analyses')
