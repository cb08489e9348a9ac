"""SQLAlchemy ORM models."""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from voiceops.db.base import Base
from voiceops.models.campaign import CampaignStatus
from voiceops.models.lead import LeadStage
from voiceops.models.queue import ACTIVE_STATUS_SQL, QueueStatus
from voiceops.models.user import UserRole


def utc_now() -> datetime:
    """Timezone-aware UTC now for defaults."""
    return datetime.now(UTC)


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [member.value for member in enum_cls]


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    """Enum column type that stores the lowercase values, not member names."""
    return Enum(enum_cls, name=name, values_callable=_enum_values)


class ProfileDB(Base):
    """User account table."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    full_name: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(20))
    hashed_password: Mapped[str] = mapped_column(String(128), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Parent client for telecaller / monitoring / lead_manager sub-users
    client_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    role: Mapped["UserRoleDB | None"] = relationship(
        back_populates="profile",
        uselist=False,
        lazy="selectin",
    )


class UserRoleDB(Base):
    """User role table."""

    __tablename__ = "user_roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    role: Mapped[UserRole] = mapped_column(_enum(UserRole, "app_role"), nullable=False)

    profile: Mapped[ProfileDB] = relationship(back_populates="role")


class VoiceAgentDB(Base):
    """Voice agent table (provider agents known locally)."""

    __tablename__ = "voice_agents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    external_agent_id: Mapped[str] = mapped_column(String(100), nullable=False)
    agent_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_id: Mapped[str | None] = mapped_column(String(36), index=True)
    engineer_id: Mapped[str | None] = mapped_column(String(36))
    status: Mapped[str] = mapped_column(String(32), default="active", nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class CampaignDB(Base):
    """Campaign table."""

    __tablename__ = "campaigns"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    agent_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("voice_agents.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    status: Mapped[CampaignStatus] = mapped_column(
        _enum(CampaignStatus, "campaign_status"),
        default=CampaignStatus.DRAFT,
        nullable=False,
    )
    concurrency_level: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    retry_delay_minutes: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    caller_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    contacted_leads: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    agent: Mapped[VoiceAgentDB | None] = relationship(lazy="selectin")
    leads: Mapped[list["CampaignLeadDB"]] = relationship(
        back_populates="campaign",
        cascade="all, delete-orphan",
    )


class CampaignLeadDB(Base):
    """Campaign lead table."""

    __tablename__ = "campaign_leads"
    __table_args__ = (
        UniqueConstraint("campaign_id", "phone_number", name="uq_campaign_leads_campaign_phone"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    campaign_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    client_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)

    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str | None] = mapped_column(String(100))
    email: Mapped[str | None] = mapped_column(String(255))
    notes: Mapped[str | None] = mapped_column(Text)

    stage: Mapped[LeadStage] = mapped_column(
        _enum(LeadStage, "lead_stage"),
        default=LeadStage.NEW,
        nullable=False,
    )
    call_status: Mapped[str | None] = mapped_column(String(32))
    call_id: Mapped[str | None] = mapped_column(String(36))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    campaign: Mapped[CampaignDB] = relationship(back_populates="leads")


class QueueItemDB(Base):
    """Campaign call queue table."""

    __tablename__ = "campaign_call_queue"
    __table_args__ = (
        # One active row per (campaign, lead). Enqueue inserts use this
        # index as their ON CONFLICT target.
        Index(
            "uq_campaign_call_queue_active_lead",
            "campaign_id",
            "lead_id",
            unique=True,
            postgresql_where=text(ACTIVE_STATUS_SQL),
            sqlite_where=text(ACTIVE_STATUS_SQL),
        ),
        Index("ix_campaign_call_queue_campaign_status", "campaign_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    campaign_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("campaigns.id", ondelete="CASCADE"),
        nullable=False,
    )
    lead_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("campaign_leads.id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    agent_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("voice_agents.id", ondelete="SET NULL"), nullable=True
    )

    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[QueueStatus] = mapped_column(
        _enum(QueueStatus, "queue_status"),
        default=QueueStatus.PENDING,
        nullable=False,
    )
    error_message: Mapped[str | None] = mapped_column(Text)

    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    call_id: Mapped[str | None] = mapped_column(String(36))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    lead: Mapped[CampaignLeadDB | None] = relationship(lazy="selectin")
    agent: Mapped[VoiceAgentDB | None] = relationship(lazy="selectin")


class CallDB(Base):
    """Placed call table."""

    __tablename__ = "calls"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    agent_id: Mapped[str | None] = mapped_column(String(36))
    lead_id: Mapped[str | None] = mapped_column(String(36))

    status: Mapped[str] = mapped_column(String(32), default="initiated", nullable=False)
    connected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    duration_seconds: Mapped[int | None] = mapped_column(Integer)
    sentiment: Mapped[str | None] = mapped_column(String(32))
    summary: Mapped[str | None] = mapped_column(Text)
    transcript: Mapped[str | None] = mapped_column(Text)
    recording_url: Mapped[str | None] = mapped_column(Text)
    external_call_id: Mapped[str | None] = mapped_column(String(100), index=True)
    call_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    agent: Mapped[VoiceAgentDB | None] = relationship(
        primaryjoin="foreign(CallDB.agent_id) == VoiceAgentDB.id",
        lazy="selectin",
        viewonly=True,
    )


class TaskDB(Base):
    """Engineer task table."""

    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(32), default="pending", nullable=False)
    assigned_to: Mapped[str | None] = mapped_column(String(36), index=True)
    agent_id: Mapped[str | None] = mapped_column(String(36))
    selected_demo_call_id: Mapped[str | None] = mapped_column(String(36))
    admin_notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    agent: Mapped[VoiceAgentDB | None] = relationship(
        primaryjoin="foreign(TaskDB.agent_id) == VoiceAgentDB.id",
        lazy="selectin",
        viewonly=True,
    )


class DemoCallDB(Base):
    """Engineer demo call table."""

    __tablename__ = "demo_calls"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    task_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tasks.id", ondelete="CASCADE"), index=True, nullable=False
    )
    agent_id: Mapped[str | None] = mapped_column(String(36))
    phone_number: Mapped[str | None] = mapped_column(String(20))
    status: Mapped[str] = mapped_column(String(32), default="pending", nullable=False)
    duration_seconds: Mapped[int | None] = mapped_column(Integer)
    recording_url: Mapped[str | None] = mapped_column(Text)
    uploaded_audio_url: Mapped[str | None] = mapped_column(Text)
    transcript: Mapped[str | None] = mapped_column(Text)
    external_call_id: Mapped[str | None] = mapped_column(String(100))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    task: Mapped[TaskDB] = relationship(lazy="selectin")


class ClientCreditDB(Base):
    """Client credit balance table."""

    __tablename__ = "client_credits"

    client_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    balance: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )
