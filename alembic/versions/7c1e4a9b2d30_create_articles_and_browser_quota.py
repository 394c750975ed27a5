"""create_articles_and_browser_quota

Revision ID: 7c1e4a9b2d30
Revises:
Create Date: 2026-10-18 09:12:44.518203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7c1e4a9b2d30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the articles table and the browser quota state table.

    ``content_status`` moves through pending -> extracting -> ready | failed.
    ``browser_quota`` holds one row per governor name.
    """
    op.create_table(
        'articles',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('link', sa.String(), nullable=False),
        sa.Column(
            'content_status',
            sa.String(),
            nullable=False,
            server_default='pending',
        ),
        sa.Column('full_content', sa.Text(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column(
            'created_at',
            sa.DateTime(),
            nullable=False,
            server_default=sa.text('CURRENT_TIMESTAMP'),
        ),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_articles_link', 'articles', ['link'])
    op.create_index('ix_articles_content_status', 'articles', ['content_status'])
    op.create_index('ix_articles_created_at', 'articles', ['created_at'])

    op.create_table(
        'browser_quota',
        sa.Column('name', sa.String(), primary_key=True),
        sa.Column('running', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('daily_seconds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('day_key', sa.String(10), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    """Drop the pipeline tables."""
    op.drop_table('browser_quota')
    op.drop_index('ix_articles_created_at', 'articles')
    op.drop_index('ix_articles_content_status', 'articles')
    op.drop_index('ix_articles_link', 'articles')
    op.drop_table('articles')
