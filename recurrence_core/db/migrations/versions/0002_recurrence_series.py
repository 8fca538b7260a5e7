"""recurrence series

Revision ID: 0002_recurrence_series
Revises: 0001_init
Create Date: 2026-10-02 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0002_recurrence_series"
down_revision = "0001_init"
branch_labels = None
depends_on = None

_LIVE_INSTANCE = "recurrence_series_id IS NOT NULL AND deleted_at IS NULL"


def upgrade() -> None:
    op.create_table(
        "recurrence_series",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column(
            "project_id",
            sa.String(length=36),
            sa.ForeignKey("projects.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("priority", sa.String(length=16), server_default=sa.text("'medium'"), nullable=False),
        sa.Column("recurrence_type", sa.String(length=16), nullable=False),
        sa.Column(
            "recurrence_behavior",
            sa.String(length=32),
            server_default=sa.text("'after_completion'"),
            nullable=False,
        ),
        sa.Column("recurrence_rule", sa.Text(), nullable=True),
        sa.Column("next_due_date", sa.String(length=10), nullable=False),
        sa.Column("active", sa.Boolean(), server_default=sa.text("1"), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_recurrence_series_user_id", "recurrence_series", ["user_id"])
    op.create_index("ix_recurrence_series_project_id", "recurrence_series", ["project_id"])
    op.create_index("ix_recurrence_series_active", "recurrence_series", ["active"])
    op.create_index("ix_recurrence_series_next_due_date", "recurrence_series", ["next_due_date"])

    with op.batch_alter_table("tasks") as batch:
        batch.add_column(sa.Column("recurrence_series_id", sa.String(length=36), nullable=True))
        batch.create_foreign_key(
            "fk_tasks_recurrence_series_id",
            "recurrence_series",
            ["recurrence_series_id"],
            ["id"],
        )
    op.create_index("ix_tasks_recurrence_series_id", "tasks", ["recurrence_series_id"])
    op.create_index(
        "uq_tasks_series_due_date",
        "tasks",
        ["recurrence_series_id", "due_date"],
        unique=True,
        sqlite_where=sa.text(_LIVE_INSTANCE),
        postgresql_where=sa.text(_LIVE_INSTANCE),
    )


def downgrade() -> None:
    op.drop_index("uq_tasks_series_due_date", table_name="tasks")
    op.drop_index("ix_tasks_recurrence_series_id", table_name="tasks")
    with op.batch_alter_table("tasks") as batch:
        batch.drop_constraint("fk_tasks_recurrence_series_id", type_="foreignkey")
        batch.drop_column("recurrence_series_id")
    op.drop_index("ix_recurrence_series_next_due_date", table_name="recurrence_series")
    op.drop_index("ix_recurrence_series_active", table_name="recurrence_series")
    op.drop_index("ix_recurrence_series_project_id", table_name="recurrence_series")
    op.drop_index("ix_recurrence_series_user_id", table_name="recurrence_series")
    op.drop_table("recurrence_series")
