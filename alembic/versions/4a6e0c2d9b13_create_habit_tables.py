"""Create habit tables

Revision ID: 4a6e0c2d9b13
Revises:
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "4a6e0c2d9b13"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "templates",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("base_time", sa.DateTime(), nullable=False),
        sa.Column("rule", sa.JSON(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("alert_offsets", sa.JSON(), nullable=False),
        sa.Column("is_all_day", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("retirement_status", sa.String(), nullable=False, server_default="none"),
        sa.Column("retirement_date", sa.DateTime(), nullable=True),
        sa.Column("undo_deadline", sa.DateTime(), nullable=True),
        sa.Column("retirement_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_templates_is_archived"), "templates", ["is_archived"], unique=False)
    op.create_index(op.f("ix_templates_retirement_status"), "templates", ["retirement_status"], unique=False)

    op.create_table(
        "atom_definitions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("template_id", sa.String(), sa.ForeignKey("templates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("input_type", sa.String(), nullable=False, server_default="binary"),
        sa.Column("target_value", sa.Float(), nullable=True),
        sa.Column("unit", sa.String(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("target_sets", sa.Integer(), nullable=True),
        sa.Column("target_reps", sa.Integer(), nullable=True),
        sa.Column("default_rest_seconds", sa.Float(), nullable=True),
        sa.Column("video_url", sa.String(), nullable=True),
        sa.Column("icon_symbol", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_atom_definitions_template_id"), "atom_definitions", ["template_id"], unique=False)

    op.create_table(
        "instances",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("template_id", sa.String(), sa.ForeignKey("templates.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_orphan", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("original_template_title", sa.String(), nullable=True),
        sa.Column("scheduled_date", sa.DateTime(), nullable=False),
        sa.Column("original_scheduled_date", sa.DateTime(), nullable=True),
        sa.Column("is_exception", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("exception_title", sa.String(), nullable=True),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("alert_offsets", sa.JSON(), nullable=False),
        sa.Column("is_all_day", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notifications_cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_instances_template_id"), "instances", ["template_id"], unique=False)
    op.create_index(op.f("ix_instances_is_orphan"), "instances", ["is_orphan"], unique=False)
    op.create_index(op.f("ix_instances_scheduled_date"), "instances", ["scheduled_date"], unique=False)

    op.create_table(
        "atom_instances",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("instance_id", sa.String(), sa.ForeignKey("instances.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source_template_id", sa.String(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("input_type", sa.String(), nullable=False, server_default="binary"),
        sa.Column("target_value", sa.Float(), nullable=True),
        sa.Column("unit", sa.String(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("target_sets", sa.Integer(), nullable=True),
        sa.Column("target_reps", sa.Integer(), nullable=True),
        sa.Column("default_rest_seconds", sa.Float(), nullable=True),
        sa.Column("video_url", sa.String(), nullable=True),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("current_value", sa.Float(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(op.f("ix_atom_instances_instance_id"), "atom_instances", ["instance_id"], unique=False)
    op.create_index(op.f("ix_atom_instances_source_template_id"), "atom_instances", ["source_template_id"], unique=False)

    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("operation", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("entity_name", sa.String(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=False),
        sa.Column("info", sa.String(), nullable=True),
    )
    op.create_index(op.f("ix_audit_log_timestamp"), "audit_log", ["timestamp"], unique=False)
    op.create_index(op.f("ix_audit_log_entity_id"), "audit_log", ["entity_id"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f("ix_audit_log_entity_id"), table_name="audit_log")
    op.drop_index(op.f("ix_audit_log_timestamp"), table_name="audit_log")
    op.drop_table("audit_log")

    op.drop_index(op.f("ix_atom_instances_source_template_id"), table_name="atom_instances")
    op.drop_index(op.f("ix_atom_instances_instance_id"), table_name="atom_instances")
    op.drop_table("atom_instances")

    op.drop_index(op.f("ix_instances_scheduled_date"), table_name="instances")
    op.drop_index(op.f("ix_instances_is_orphan"), table_name="instances")
    op.drop_index(op.f("ix_instances_template_id"), table_name="instances")
    op.drop_table("instances")

    op.drop_index(op.f("ix_atom_definitions_template_id"), table_name="atom_definitions")
    op.drop_table("atom_definitions")

    op.drop_index(op.f("ix_templates_retirement_status"), table_name="templates")
    op.drop_index(op.f("ix_templates_is_archived"), table_name="templates")
    op.drop_table("templates")
