"""create profiles, campaigns, call queue and call tables"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

# Must match voiceops.models.queue.ACTIVE_STATUS_SQL
ACTIVE_STATUS_SQL = "status IN ('pending', 'in_progress', 'retry_pending')"


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("username", sa.String(length=100), nullable=False, unique=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("hashed_password", sa.String(length=128), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "client_id",
            sa.String(length=36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "user_roles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("profiles.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "role",
            sa.Enum(
                "admin",
                "engineer",
                "client",
                "telecaller",
                "monitoring",
                "lead_manager",
                name="app_role",
            ),
            nullable=False,
        ),
    )

    op.create_table(
        "voice_agents",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("external_agent_id", sa.String(length=100), nullable=False),
        sa.Column("agent_name", sa.String(length=255), nullable=False),
        sa.Column("client_id", sa.String(length=36), nullable=True),
        sa.Column("engineer_id", sa.String(length=36), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_voice_agents_client_id", "voice_agents", ["client_id"])

    op.create_table(
        "campaigns",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("client_id", sa.String(length=36), nullable=False),
        sa.Column(
            "agent_id",
            sa.String(length=36),
            sa.ForeignKey("voice_agents.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "status",
            sa.Enum(
                "draft",
                "running",
                "paused",
                "stopped",
                "completed",
                name="campaign_status",
            ),
            nullable=False,
            server_default="draft",
        ),
        sa.Column("concurrency_level", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("retry_delay_minutes", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("caller_id", sa.String(length=32), nullable=True),
        sa.Column("contacted_leads", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_campaigns_client_id", "campaigns", ["client_id"])

    op.create_table(
        "campaign_leads",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "campaign_id",
            sa.String(length=36),
            sa.ForeignKey("campaigns.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("client_id", sa.String(length=36), nullable=False),
        sa.Column("phone_number", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "stage",
            sa.Enum(
                "new",
                "contacted",
                "interested",
                "partially_interested",
                "not_interested",
                "lost",
                name="lead_stage",
            ),
            nullable=False,
            server_default="new",
        ),
        sa.Column("call_status", sa.String(length=32), nullable=True),
        sa.Column("call_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "campaign_id", "phone_number", name="uq_campaign_leads_campaign_phone"
        ),
    )
    op.create_index("ix_campaign_leads_campaign_id", "campaign_leads", ["campaign_id"])
    op.create_index("ix_campaign_leads_client_id", "campaign_leads", ["client_id"])

    op.create_table(
        "campaign_call_queue",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "campaign_id",
            sa.String(length=36),
            sa.ForeignKey("campaigns.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "lead_id",
            sa.String(length=36),
            sa.ForeignKey("campaign_leads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("client_id", sa.String(length=36), nullable=False),
        sa.Column(
            "agent_id",
            sa.String(length=36),
            sa.ForeignKey("voice_agents.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "in_progress",
                "completed",
                "failed",
                "retry_pending",
                "max_retries_reached",
                "cancelled",
                name="queue_status",
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("call_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "uq_campaign_call_queue_active_lead",
        "campaign_call_queue",
        ["campaign_id", "lead_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_STATUS_SQL),
        sqlite_where=sa.text(ACTIVE_STATUS_SQL),
    )
    op.create_index(
        "ix_campaign_call_queue_campaign_status",
        "campaign_call_queue",
        ["campaign_id", "status"],
    )
    op.create_index("ix_campaign_call_queue_client_id", "campaign_call_queue", ["client_id"])

    op.create_table(
        "calls",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("client_id", sa.String(length=36), nullable=False),
        sa.Column("agent_id", sa.String(length=36), nullable=True),
        sa.Column("lead_id", sa.String(length=36), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="initiated"),
        sa.Column("connected", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("sentiment", sa.String(length=32), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("transcript", sa.Text(), nullable=True),
        sa.Column("recording_url", sa.Text(), nullable=True),
        sa.Column("external_call_id", sa.String(length=100), nullable=True),
        sa.Column(
            "metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'::json")
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_calls_client_id", "calls", ["client_id"])
    op.create_index("ix_calls_external_call_id", "calls", ["external_call_id"])

    op.create_table(
        "tasks",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("assigned_to", sa.String(length=36), nullable=True),
        sa.Column("agent_id", sa.String(length=36), nullable=True),
        sa.Column("selected_demo_call_id", sa.String(length=36), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_tasks_assigned_to", "tasks", ["assigned_to"])

    op.create_table(
        "demo_calls",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "task_id",
            sa.String(length=36),
            sa.ForeignKey("tasks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("agent_id", sa.String(length=36), nullable=True),
        sa.Column("phone_number", sa.String(length=20), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("recording_url", sa.Text(), nullable=True),
        sa.Column("uploaded_audio_url", sa.Text(), nullable=True),
        sa.Column("transcript", sa.Text(), nullable=True),
        sa.Column("external_call_id", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_demo_calls_task_id", "demo_calls", ["task_id"])

    op.create_table(
        "client_credits",
        sa.Column("client_id", sa.String(length=36), primary_key=True),
        sa.Column("balance", sa.Float(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("client_credits")
    op.drop_index("ix_demo_calls_task_id", table_name="demo_calls")
    op.drop_table("demo_calls")
    op.drop_index("ix_tasks_assigned_to", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("ix_calls_external_call_id", table_name="calls")
    op.drop_index("ix_calls_client_id", table_name="calls")
    op.drop_table("calls")
    op.drop_index("ix_campaign_call_queue_client_id", table_name="campaign_call_queue")
    op.drop_index("ix_campaign_call_queue_campaign_status", table_name="campaign_call_queue")
    op.drop_index("uq_campaign_call_queue_active_lead", table_name="campaign_call_queue")
    op.drop_table("campaign_call_queue")
    op.drop_index("ix_campaign_leads_client_id", table_name="campaign_leads")
    op.drop_index("ix_campaign_leads_campaign_id", table_name="campaign_leads")
    op.drop_table("campaign_leads")
    op.drop_index("ix_campaigns_client_id", table_name="campaigns")
    op.drop_table("campaigns")
    op.drop_index("ix_voice_agents_client_id", table_name="voice_agents")
    op.drop_table("voice_agents")
    op.drop_table("user_roles")
    op.drop_table("profiles")
    sa.Enum(name="queue_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="lead_stage").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="campaign_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="app_role").drop(op.get_bind(), checkfirst=True)
