"""Add last_evaluated_at so sweep batches rotate past stuck tasks."""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0002_add_task_last_evaluated_at"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Add the sweep rotation stamp and its index."""
    op.add_column(
        "tasks",
        sa.Column("last_evaluated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "idx_tasks_status_evaluated", "tasks", ["status", "last_evaluated_at"]
    )


def downgrade() -> None:
    """Drop the sweep rotation stamp."""
    op.drop_index("idx_tasks_status_evaluated", table_name="tasks")
    op.drop_column("tasks", "last_evaluated_at")
