"""Initial RunnerGate schema."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create tasks and participants tables and their enums."""
    bind = op.get_bind()

    taskkind = sa.Enum("errand", "commission", name="taskkind")
    taskstatus = sa.Enum(
        "open",
        "notified",
        "assigned",
        "completed",
        "cancelled",
        name="taskstatus",
    )
    participantrole = sa.Enum("requester", "runner", name="participantrole")

    taskkind.create(bind, checkfirst=True)
    taskstatus.create(bind, checkfirst=True)
    participantrole.create(bind, checkfirst=True)

    op.create_table(
        "tasks",
        sa.Column("task_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("kind", postgresql.ENUM(name="taskkind", create_type=False), nullable=False),
        sa.Column("requester_id", sa.String(length=255), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("category", sa.String(length=255), nullable=False, server_default=""),
        sa.Column(
            "status",
            postgresql.ENUM(name="taskstatus", create_type=False),
            nullable=False,
        ),
        sa.Column("notified_runner_id", sa.String(length=255), nullable=True),
        sa.Column("notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "excluded_runner_ids",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("declined_runner_id", sa.String(length=255), nullable=True),
        sa.Column("dispatch_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("assigned_runner_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "(notified_runner_id IS NULL) = (notified_at IS NULL)",
            name="ck_tasks_notified_pair",
        ),
        sa.CheckConstraint(
            "declined_runner_id IS NULL OR kind = 'commission'",
            name="ck_tasks_declined_commission_only",
        ),
    )
    op.create_index("ix_tasks_requester_id", "tasks", ["requester_id"])
    op.create_index("idx_tasks_status_notified", "tasks", ["status", "notified_at"])
    op.create_index("idx_tasks_status_updated", "tasks", ["status", "updated_at"])
    op.create_index("idx_tasks_notified_runner", "tasks", ["notified_runner_id"])
    op.create_index("idx_tasks_assigned_runner", "tasks", ["assigned_runner_id", "status"])

    op.create_table(
        "participants",
        sa.Column("participant_id", sa.String(length=255), primary_key=True),
        sa.Column(
            "role",
            postgresql.ENUM(name="participantrole", create_type=False),
            nullable=False,
        ),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("location_accuracy_m", sa.Float(), nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("average_rating", sa.Float(), nullable=True),
    )
    op.create_index(
        "idx_participants_dispatchable",
        "participants",
        ["role", "is_available", "location_updated_at"],
    )


def downgrade() -> None:
    """Drop tables and enums."""
    op.drop_index("idx_participants_dispatchable", table_name="participants")
    op.drop_table("participants")

    op.drop_index("idx_tasks_assigned_runner", table_name="tasks")
    op.drop_index("idx_tasks_notified_runner", table_name="tasks")
    op.drop_index("idx_tasks_status_updated", table_name="tasks")
    op.drop_index("idx_tasks_status_notified", table_name="tasks")
    op.drop_index("ix_tasks_requester_id", table_name="tasks")
    op.drop_table("tasks")

    bind = op.get_bind()
    sa.Enum(name="participantrole").drop(bind, checkfirst=True)
    sa.Enum(name="taskstatus").drop(bind, checkfirst=True)
    sa.Enum(name="taskkind").drop(bind, checkfirst=True)
