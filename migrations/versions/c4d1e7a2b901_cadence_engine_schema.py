"""cadence_engine_schema

Creates the engine schema:
  - organizations, org_units, people
  - objective_nodes     — objectives and issues in the level cascade
  - metrics, metric_values
  - meetings, agenda_sections
  - domain_events       — outbox of emitted facts
  - scheduled_jobs      — job registry and run history

Tables are created conditionally (IF NOT EXISTS semantics) so the revision
can run against a development database that already received them via
db.create_all().

Revision ID: c4d1e7a2b901
Revises:
Create Date: 2026-10-19 09:12:44.118201
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'c4d1e7a2b901'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Organization ─────────────────────────────────────────────────────
    if "organizations" not in existing:
        op.create_table(
            "organizations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    if "org_units" not in existing:
        op.create_table(
            "org_units",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("level", sa.String(length=20), nullable=False,
                      comment="individual | pillar | company"),
            sa.Column("parent_unit_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("level IN ('individual','pillar','company')",
                               name="ck_org_unit_level"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["parent_unit_id"], ["org_units.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_org_units_organization_id", "org_units", ["organization_id"])
        op.create_index("ix_org_units_parent_unit_id", "org_units", ["parent_unit_id"])

    if "people" not in existing:
        op.create_table(
            "people",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("access_level", sa.String(length=20), nullable=False,
                      server_default="consumer"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("status IN ('active','inactive','invited')",
                               name="ck_person_status"),
            sa.CheckConstraint("access_level IN ('admin','elt','slt','consumer')",
                               name="ck_person_access_level"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_people_organization_id", "people", ["organization_id"])

    # ── Objective cascade ────────────────────────────────────────────────
    if "objective_nodes" not in existing:
        op.create_table(
            "objective_nodes",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("kind", sa.String(length=20), nullable=False,
                      comment="objective | issue"),
            sa.Column("level", sa.String(length=20), nullable=False,
                      comment="individual | pillar | company"),
            sa.Column("parent_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("owner_id", sa.Integer(), nullable=True),
            sa.Column("org_unit_id", sa.Integer(), nullable=True),
            sa.Column("priority", sa.Integer(), nullable=True,
                      comment="Higher = more urgent; NULL ranks as 5"),
            sa.Column("escalated_from_id", sa.Integer(), nullable=True),
            sa.Column("escalated_to_id", sa.Integer(), nullable=True),
            sa.Column("original_issue_id", sa.Integer(), nullable=True,
                      comment="First issue of the escalation chain"),
            sa.Column("original_unit_id", sa.Integer(), nullable=True),
            sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("escalated_by_id", sa.Integer(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1",
                      comment="Optimistic concurrency counter"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("kind IN ('objective','issue')", name="ck_node_kind"),
            sa.CheckConstraint("level IN ('individual','pillar','company')",
                               name="ck_node_level"),
            sa.CheckConstraint(
                "(kind = 'objective' AND status IN "
                "('not_started','on_track','at_risk','off_track','complete')) OR "
                "(kind = 'issue' AND status IN "
                "('open','prioritized','escalated','resolved'))",
                name="ck_node_status",
            ),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["parent_id"], ["objective_nodes.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["escalated_from_id"], ["objective_nodes.id"],
                                    ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["escalated_to_id"], ["objective_nodes.id"],
                                    ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["owner_id"], ["people.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["escalated_by_id"], ["people.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["org_unit_id"], ["org_units.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["original_unit_id"], ["org_units.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_objective_nodes_organization_id", "objective_nodes",
                        ["organization_id"])
        op.create_index("ix_objective_nodes_parent_id", "objective_nodes", ["parent_id"])
        op.create_index("ix_objective_nodes_owner_id", "objective_nodes", ["owner_id"])
        op.create_index("ix_objective_nodes_org_unit_id", "objective_nodes", ["org_unit_id"])
        op.create_index("ix_objective_nodes_escalated_from_id", "objective_nodes",
                        ["escalated_from_id"])
        op.create_index("ix_objective_nodes_escalated_to_id", "objective_nodes",
                        ["escalated_to_id"])
        op.create_index("ix_objective_nodes_org_kind_status", "objective_nodes",
                        ["organization_id", "kind", "status"])

    # ── Scorecard ────────────────────────────────────────────────────────
    if "metrics" not in existing:
        op.create_table(
            "metrics",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("goal", sa.Float(), nullable=True),
            sa.Column("unit", sa.String(length=30), nullable=True),
            sa.Column("goal_direction", sa.String(length=10), nullable=True,
                      server_default="above"),
            sa.Column("owner_id", sa.Integer(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("goal_direction IN ('above','below')",
                               name="ck_metric_goal_direction"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["owner_id"], ["people.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_metrics_organization_id", "metrics", ["organization_id"])
        op.create_index("ix_metrics_owner_id", "metrics", ["owner_id"])

    if "metric_values" not in existing:
        op.create_table(
            "metric_values",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("metric_id", sa.Integer(), nullable=False),
            sa.Column("value", sa.Float(), nullable=False),
            sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["metric_id"], ["metrics.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_metric_values_metric_id", "metric_values", ["metric_id"])

    # ── Meetings ─────────────────────────────────────────────────────────
    if "meetings" not in existing:
        op.create_table(
            "meetings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("meeting_type", sa.String(length=20), nullable=False,
                      server_default="l10"),
            sa.Column("status", sa.String(length=20), nullable=False,
                      server_default="scheduled"),
            sa.Column("org_unit_id", sa.Integer(), nullable=True),
            sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("duration_minutes", sa.Integer(), nullable=True),
            sa.Column("current_section_index", sa.Integer(), nullable=True),
            sa.Column("current_section_started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("scorecard_snapshot", sa.JSON(), nullable=True),
            sa.Column("objectives_snapshot", sa.JSON(), nullable=True),
            sa.Column("queued_issue_ids", sa.JSON(), nullable=False),
            sa.Column("snapshot_generated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("summary", sa.JSON(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1",
                      comment="Optimistic concurrency counter"),
            *_timestamps(),
            sa.CheckConstraint(
                "status IN ('scheduled','in_progress','completed','cancelled')",
                name="ck_meeting_status",
            ),
            sa.CheckConstraint(
                "meeting_type IN ('l10','quarterly','annual','ad_hoc')",
                name="ck_meeting_type",
            ),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["org_unit_id"], ["org_units.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_meetings_organization_id", "meetings", ["organization_id"])
        op.create_index("ix_meetings_org_unit_id", "meetings", ["org_unit_id"])
        op.create_index("ix_meetings_org_status_scheduled", "meetings",
                        ["organization_id", "status", "scheduled_at"])

    if "agenda_sections" not in existing:
        op.create_table(
            "agenda_sections",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("meeting_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("planned_duration_minutes", sa.Integer(), nullable=False,
                      server_default="5"),
            sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("elapsed_seconds", sa.Integer(), nullable=False, server_default="0"),
            sa.CheckConstraint("planned_duration_minutes >= 0",
                               name="ck_agenda_section_duration"),
            sa.ForeignKeyConstraint(["meeting_id"], ["meetings.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("meeting_id", "sort_order", name="uq_agenda_section_order"),
        )
        op.create_index("ix_agenda_sections_meeting_id", "agenda_sections", ["meeting_id"])

    # ── Outbox + scheduler ───────────────────────────────────────────────
    if "domain_events" not in existing:
        op.create_table(
            "domain_events",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("event_type", sa.String(length=60), nullable=False),
            sa.Column("entity_type", sa.String(length=50), nullable=False),
            sa.Column("entity_id", sa.Integer(), nullable=False),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("payload", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_domain_events_organization_id", "domain_events", ["organization_id"])
        op.create_index("ix_domain_events_event_type", "domain_events", ["event_type"])
        op.create_index("ix_domain_events_created_at", "domain_events", ["created_at"])

    if "scheduled_jobs" not in existing:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_type", sa.String(length=30), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def downgrade():
    for table in (
        "scheduled_jobs", "domain_events", "agenda_sections", "meetings",
        "metric_values", "metrics", "objective_nodes", "people", "org_units",
        "organizations",
    ):
        op.drop_table(table)
