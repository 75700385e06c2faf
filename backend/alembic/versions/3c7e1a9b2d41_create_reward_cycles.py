"""create reward cycles

Revision ID: 3c7e1a9b2d41
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3c7e1a9b2d41"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "reward_cycles",
        sa.Column("cycle_id", sa.String(length=36), nullable=False),
        sa.Column("team_id", sa.String(length=100), nullable=False),
        sa.Column("reward_cycle_start_date", sa.String(length=26), nullable=True),
        sa.Column("reward_cycle_end_date", sa.String(length=26), nullable=True),
        sa.Column("is_recurring", sa.Integer(), nullable=True),
        sa.Column("range_of_occurrence", sa.Integer(), nullable=True),
        sa.Column("range_of_occurrence_end_date", sa.String(length=26), nullable=True),
        sa.Column("number_of_occurrences", sa.Integer(), nullable=True),
        sa.Column("reward_cycle_state", sa.Integer(), nullable=True),
        sa.Column("result_published", sa.Integer(), nullable=True),
        sa.Column("result_published_on", sa.String(length=26), nullable=True),
        sa.Column("superseded_by", sa.String(length=36), nullable=True),
        sa.Column("created_on", sa.String(length=26), nullable=True),
        sa.Column("created_by_object_id", sa.String(length=36), nullable=True),
        sa.Column("created_by_principal_name", sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint("cycle_id"),
    )
    with op.batch_alter_table("reward_cycles", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_reward_cycles_team_id"), ["team_id"], unique=False)
        batch_op.create_index(
            "ix_reward_cycles_team_current", ["team_id", "result_published", "superseded_by"], unique=False
        )
        batch_op.create_index("ix_reward_cycles_unpublished", ["result_published", "superseded_by"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    with op.batch_alter_table("reward_cycles", schema=None) as batch_op:
        batch_op.drop_index("ix_reward_cycles_unpublished")
        batch_op.drop_index("ix_reward_cycles_team_current")
        batch_op.drop_index(batch_op.f("ix_reward_cycles_team_id"))

    op.drop_table("reward_cycles")
