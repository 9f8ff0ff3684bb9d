"""initial back office schema

Business units, users, roles and memberships; properties and their
movement requests; approval workflows, steps, requests and responses;
audit log.

Revision ID: a1c3e5f7b901
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "a1c3e5f7b901"
down_revision = None
branch_labels = None
depends_on = None

_OPEN_REQUEST_WHERE = "status IN ('PENDING', 'IN_PROGRESS')"


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def _movement_columns():
    return [
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("business_unit_id", sa.Integer(), sa.ForeignKey("business_units.id"), nullable=False, index=True),
        sa.Column("approval_request_id", sa.Integer(), sa.ForeignKey("approval_requests.id", ondelete="SET NULL")),
        sa.Column("requested_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("approved_by_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("received_by_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("previous_property_status", sa.String(20)),
        sa.Column("previous_location", sa.String(30)),
        sa.Column("notes", sa.Text()),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    ]


def upgrade():
    # ── Tenancy & access ─────────────────────────────────────────────────
    op.create_table(
        "business_units",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(100), nullable=False, unique=True),
        sa.Column("email", sa.String(200)),
        sa.Column("first_name", sa.String(100)),
        sa.Column("last_name", sa.String(100)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
        sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_table(
        "role_permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("module", sa.String(30), nullable=False),
        sa.Column("can_create", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_update", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_delete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_approve", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("role_id", "module", name="uq_role_permission_module"),
    )
    op.create_table(
        "business_unit_members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("business_unit_id", sa.Integer(), sa.ForeignKey("business_units.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "business_unit_id", name="uq_business_unit_member"),
    )
    op.create_index("ix_business_unit_members_role_id", "business_unit_members", ["role_id"])

    # ── Properties ───────────────────────────────────────────────────────
    op.create_table(
        "properties",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("business_unit_id", sa.Integer(), sa.ForeignKey("business_units.id"), nullable=False, index=True),
        sa.Column("title_number", sa.String(100), nullable=False, unique=True),
        sa.Column("property_name", sa.String(255), nullable=False),
        sa.Column("location", sa.String(255)),
        sa.Column("classification", sa.String(50)),
        sa.Column("area", sa.Numeric(14, 2)),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        sa.Column("current_location", sa.String(30), nullable=False, server_default="MAIN_OFFICE"),
        *_timestamps(),
    )
    op.create_table(
        "property_movements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("business_unit_id", sa.Integer(), sa.ForeignKey("business_units.id"), nullable=False),
        sa.Column("movement_type", sa.String(30), nullable=False),
        sa.Column("from_location", sa.String(30)),
        sa.Column("to_location", sa.String(30)),
        sa.Column("reference_type", sa.String(20)),
        sa.Column("reference_id", sa.Integer()),
        sa.Column("moved_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("movement_date", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("notes", sa.Text()),
    )

    # ── Approval workflows ───────────────────────────────────────────────
    op.create_table(
        "approval_workflows",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
        sa.Column("entity_type", sa.String(30), nullable=False, index=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_table(
        "approval_steps",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("workflow_id", sa.Integer(), sa.ForeignKey("approval_workflows.id", ondelete="CASCADE"), nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("step_name", sa.String(200), nullable=False),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id"), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("can_override", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("override_min_level", sa.Integer()),
        sa.UniqueConstraint("workflow_id", "step_order", name="uq_approval_step_order"),
    )
    op.create_table(
        "approval_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("workflow_id", sa.Integer(), sa.ForeignKey("approval_workflows.id"), nullable=False, index=True),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id", ondelete="SET NULL"), index=True),
        sa.Column("business_unit_id", sa.Integer(), sa.ForeignKey("business_units.id"), nullable=False, index=True),
        sa.Column("requested_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("current_step_order", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_overridden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("overridden_by_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("overridden_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("ix_approval_requests_entity", "approval_requests", ["entity_type", "entity_id"])
    op.create_index(
        "uq_approval_requests_open_entity",
        "approval_requests",
        ["entity_type", "entity_id"],
        unique=True,
        postgresql_where=sa.text(_OPEN_REQUEST_WHERE),
        sqlite_where=sa.text(_OPEN_REQUEST_WHERE),
    )
    op.create_table(
        "approval_step_responses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("approval_request_id", sa.Integer(), sa.ForeignKey("approval_requests.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("step_id", sa.Integer(), sa.ForeignKey("approval_steps.id", ondelete="SET NULL")),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("step_name", sa.String(200)),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="SET NULL")),
        sa.Column("responded_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("comments", sa.Text()),
        sa.Column("is_override", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("responded_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── Movement requests ────────────────────────────────────────────────
    op.create_table(
        "property_returns",
        *_movement_columns(),
        sa.Column("return_type", sa.String(20), nullable=False),
        sa.Column("returned_by_name", sa.String(200)),
        sa.Column("reason_for_return", sa.Text()),
        sa.Column("condition", sa.String(100)),
        sa.Column("return_date", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "property_releases",
        *_movement_columns(),
        sa.Column("release_type", sa.String(20), nullable=False),
        sa.Column("target_business_unit_id", sa.Integer(), sa.ForeignKey("business_units.id")),
        sa.Column("bank_name", sa.String(200)),
        sa.Column("purpose_of_release", sa.Text()),
        sa.Column("received_by_name", sa.String(200)),
        sa.Column("transmittal_number", sa.String(100)),
        sa.Column("release_date", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("expected_return_date", sa.Date()),
    )
    op.create_table(
        "property_turnovers",
        *_movement_columns(),
        sa.Column("turnover_type", sa.String(30), nullable=False),
        sa.Column("from_business_unit_id", sa.Integer(), sa.ForeignKey("business_units.id")),
        sa.Column("to_business_unit_id", sa.Integer(), sa.ForeignKey("business_units.id")),
        sa.Column("purpose", sa.Text()),
        sa.Column("turnover_date", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── Audit ────────────────────────────────────────────────────────────
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("entity", sa.String(60), nullable=False, index=True),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id", ondelete="SET NULL")),
        sa.Column("business_unit_id", sa.Integer(), sa.ForeignKey("business_units.id"), index=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("old_values", sa.Text()),
        sa.Column("new_values", sa.Text()),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_entity_ref", "audit_logs", ["entity", "entity_id"])


def downgrade():
    op.drop_index("ix_audit_logs_entity_ref", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("property_turnovers")
    op.drop_table("property_releases")
    op.drop_table("property_returns")
    op.drop_table("approval_step_responses")
    op.drop_index("uq_approval_requests_open_entity", table_name="approval_requests")
    op.drop_index("ix_approval_requests_entity", table_name="approval_requests")
    op.drop_table("approval_requests")
    op.drop_table("approval_steps")
    op.drop_table("approval_workflows")
    op.drop_table("property_movements")
    op.drop_table("properties")
    op.drop_index("ix_business_unit_members_role_id", table_name="business_unit_members")
    op.drop_table("business_unit_members")
    op.drop_table("role_permissions")
    op.drop_table("roles")
    op.drop_table("users")
    op.drop_table("business_units")
