"""add suggestion client token

Revision ID: 20261015_0002
Revises: 20261012_0001
Create Date: 2026-10-15 18:05:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261015_0002"
down_revision = "20261012_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("activity_suggestions") as batch_op:
        batch_op.add_column(sa.Column("client_token", sa.String(), nullable=True))
        batch_op.create_unique_constraint("uq_suggestion_client_token", ["trip_id", "client_token"])


def downgrade() -> None:
    with op.batch_alter_table("activity_suggestions") as batch_op:
        batch_op.drop_constraint("uq_suggestion_client_token", type_="unique")
        batch_op.drop_column("client_token")
