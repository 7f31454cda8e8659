"""Add impact, action and analysis_failed to changes.

The pipeline keeps writing against databases that have not run this
migration yet: change inserts retry without whichever of these columns is
missing.

Revision ID: 002
Revises: 001
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers
revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade():
    op.add_column("changes", sa.Column("impact", sa.Text, nullable=True))
    op.add_column("changes", sa.Column("action", sa.Text, nullable=True))
    op.add_column(
        "changes",
        sa.Column("analysis_failed", sa.Boolean, nullable=False, server_default="false"),
    )


def downgrade():
    op.drop_column("changes", "analysis_failed")
    op.drop_column("changes", "action")
    op.drop_column("changes", "impact")
