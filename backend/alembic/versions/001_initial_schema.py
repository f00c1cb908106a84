"""Initial schema: organizations, framework catalog, assessments, risks, score history

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-17

Creates: organizations, frameworks, controls, control_mappings, evidence,
         control_evidence, assessments, risks, risk_controls, risk_score_history
"""
from alembic import op
import sqlalchemy as sa

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── 1. Organizations ──────────────────────────────────────────
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    # ── 2. Framework catalog ──────────────────────────────────────
    op.create_table(
        "frameworks",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("short_name", sa.String(50), nullable=False),
        sa.Column("version", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    op.create_table(
        "controls",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("framework_id", sa.Integer, sa.ForeignKey("frameworks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("parent_id", sa.Integer, sa.ForeignKey("controls.id"), nullable=True),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint("framework_id", "code", name="uq_controls_framework_code"),
    )
    op.create_index("ix_controls_framework_id", "controls", ["framework_id"])

    op.create_table(
        "control_mappings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("source_control_id", sa.Integer, sa.ForeignKey("controls.id", ondelete="CASCADE"), nullable=False),
        sa.Column("target_control_id", sa.Integer, sa.ForeignKey("controls.id", ondelete="CASCADE"), nullable=False),
        sa.Column("source_framework_id", sa.Integer, sa.ForeignKey("frameworks.id"), nullable=False),
        sa.Column("target_framework_id", sa.Integer, sa.ForeignKey("frameworks.id"), nullable=False),
        sa.Column("mapping_type", sa.String(20), nullable=False, server_default="EQUIVALENT"),
        sa.Column("confidence", sa.String(10), nullable=False, server_default="MEDIUM"),
        sa.Column("bidirectional", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("rationale", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("source_control_id", "target_control_id", name="uq_control_mapping_pair"),
    )
    op.create_index("ix_cm_source_fw", "control_mappings", ["source_framework_id"])
    op.create_index("ix_cm_target_fw", "control_mappings", ["target_framework_id"])

    op.create_table(
        "evidence",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    op.create_table(
        "control_evidence",
        sa.Column("control_id", sa.Integer, sa.ForeignKey("controls.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("evidence_id", sa.Integer, sa.ForeignKey("evidence.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    # ── 3. Assessments ────────────────────────────────────────────
    op.create_table(
        "assessments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer, sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("framework_id", sa.Integer, sa.ForeignKey("frameworks.id"), nullable=False),
        sa.Column("ai_system_name", sa.String(200), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_assessments_org_framework", "assessments", ["organization_id", "framework_id"])

    # ── 4. Risks ──────────────────────────────────────────────────
    op.create_table(
        "risks",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("assessment_id", sa.Integer, sa.ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("category", sa.String(30), nullable=False, server_default="OTHER"),
        sa.Column("treatment_status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("likelihood", sa.Integer, nullable=False),
        sa.Column("impact", sa.Integer, nullable=False),
        sa.Column("inherent_score", sa.Integer, nullable=False),
        sa.Column("residual_score", sa.Integer, nullable=False),
        sa.Column("target_score", sa.Integer, nullable=True),
        sa.Column("control_effectiveness", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.CheckConstraint("likelihood BETWEEN 1 AND 5", name="ck_risks_likelihood"),
        sa.CheckConstraint("impact BETWEEN 1 AND 5", name="ck_risks_impact"),
        sa.CheckConstraint("residual_score BETWEEN 0 AND inherent_score", name="ck_risks_residual"),
        sa.CheckConstraint("control_effectiveness BETWEEN 0 AND 100", name="ck_risks_effectiveness"),
    )
    op.create_index("ix_risks_assessment_id", "risks", ["assessment_id"])
    op.create_index("ix_risks_rating", "risks", ["likelihood", "impact"])

    op.create_table(
        "risk_controls",
        sa.Column("risk_id", sa.Integer, sa.ForeignKey("risks.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("control_id", sa.Integer, sa.ForeignKey("controls.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("effectiveness", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.CheckConstraint("effectiveness BETWEEN 0 AND 100", name="ck_risk_controls_effectiveness"),
    )
    op.create_index("ix_risk_controls_control_id", "risk_controls", ["control_id"])

    # ── 5. Score history (append-only) ────────────────────────────
    op.create_table(
        "risk_score_history",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("risk_id", sa.Integer, sa.ForeignKey("risks.id", ondelete="CASCADE"), nullable=False),
        sa.Column("inherent_score", sa.Integer, nullable=False),
        sa.Column("residual_score", sa.Integer, nullable=False),
        sa.Column("target_score", sa.Integer, nullable=True),
        sa.Column("control_effectiveness", sa.Integer, nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("recorded_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_rsh_risk_recorded", "risk_score_history", ["risk_id", "recorded_at"])


def downgrade() -> None:
    op.drop_table("risk_score_history")
    op.drop_table("risk_controls")
    op.drop_table("risks")
    op.drop_table("assessments")
    op.drop_table("control_evidence")
    op.drop_table("evidence")
    op.drop_table("control_mappings")
    op.drop_table("controls")
    op.drop_table("frameworks")
    op.drop_table("organizations")
