"""
SQLAlchemy Database Models
Maps the power dialer tables in Supabase PostgreSQL
"""
from sqlalchemy import (
    CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text,
)
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.schema import CreateIndex, CreateTable
from datetime import datetime, timezone
import uuid

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PowerDialerContact(Base):
    """Dialable contact - maps to power_dialer_contacts"""
    __tablename__ = "power_dialer_contacts"
    __table_args__ = (
        CheckConstraint(
            "status IN ('not_contacted', 'in_progress', 'contacted', 'voicemail', 'no_answer')",
            name="ck_contact_status",
        ),
        Index("ix_contacts_status_created", "status", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phone_number = Column(String(20), nullable=False)
    name = Column(String(255))
    lead_id = Column(String(64), index=True)
    status = Column(String(20), nullable=False, default="not_contacted")
    last_call_timestamp = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    calls = relationship("PowerDialerCall", back_populates="contact")


class PowerDialerAgent(Base):
    """Agent - maps to power_dialer_agents"""
    __tablename__ = "power_dialer_agents"
    __table_args__ = (
        CheckConstraint("status IN ('available', 'busy', 'offline')", name="ck_agent_status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), unique=True)
    name = Column(String(255))
    status = Column(String(20), nullable=False, default="offline")
    # One non-terminal call per agent
    current_call_id = Column(
        UUID(as_uuid=True),
        ForeignKey("power_dialer_calls.id", ondelete="SET NULL", use_alter=True),
        unique=True,
    )
    last_status_change = Column(DateTime(timezone=True), default=_utcnow)


class PowerDialerCall(Base):
    """Call attempt - maps to power_dialer_calls"""
    __tablename__ = "power_dialer_calls"
    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'in_progress', 'completed', 'failed')",
            name="ck_call_status",
        ),
        CheckConstraint(
            "machine_detection_result IS NULL OR "
            "machine_detection_result IN ('human', 'machine', 'unknown')",
            name="ck_call_machine_detection",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    contact_id = Column(UUID(as_uuid=True), ForeignKey("power_dialer_contacts.id", ondelete="SET NULL"))
    agent_id = Column(UUID(as_uuid=True), ForeignKey("power_dialer_agents.id", ondelete="SET NULL"))
    session_id = Column(String(64), index=True)
    twilio_call_sid = Column(String(64), unique=True)
    status = Column(String(20), nullable=False, default="queued")
    provider_status = Column(String(20))
    machine_detection_result = Column(String(20))
    start_timestamp = Column(DateTime(timezone=True))
    end_timestamp = Column(DateTime(timezone=True))
    duration = Column(Integer)
    status_updated_at = Column(DateTime(timezone=True), default=_utcnow)

    contact = relationship("PowerDialerContact", back_populates="calls")
    queue_entry = relationship("PowerDialerQueueEntry", back_populates="call", uselist=False)


class PowerDialerQueueEntry(Base):
    """Call waiting for an agent - maps to power_dialer_call_queue"""
    __tablename__ = "power_dialer_call_queue"
    __table_args__ = (
        Index("ix_queue_priority_created", "priority", "created_timestamp"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # At most one entry per call
    call_id = Column(
        UUID(as_uuid=True),
        ForeignKey("power_dialer_calls.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    priority = Column(Integer, nullable=False, default=0)
    created_timestamp = Column(DateTime(timezone=True), default=_utcnow)
    assigned_agent_id = Column(UUID(as_uuid=True), ForeignKey("power_dialer_agents.id", ondelete="SET NULL"))

    call = relationship("PowerDialerCall", back_populates="queue_entry")


class CallStatusUpdate(Base):
    """Provider status callback record - maps to call_status_updates"""
    __tablename__ = "call_status_updates"
    __table_args__ = (
        Index("ix_status_updates_session_ts", "session_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False)
    call_sid = Column(String(64), nullable=False)
    status = Column(String(20), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    data = Column(JSONB, default=dict)


class Lead(Base):
    """
    CRM lead - maps to leads.

    Owned by the lead management screens; the dialer only writes
    disposition and updated_at.
    """
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    phone1 = Column(String(20))
    disposition = Column(String(50), default="Not Contacted")
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class LeadActivity(Base):
    """Append-only activity log entry - maps to lead_activities"""
    __tablename__ = "lead_activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lead_id = Column(Integer, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(50), nullable=False)
    description = Column(Text)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


def render_schema_ddl() -> str:
    """PostgreSQL DDL for every dialer table, in dependency order"""
    dialect = postgresql.dialect()
    statements = []
    for table in Base.metadata.sorted_tables:
        statements.append(str(CreateTable(table).compile(dialect=dialect)).strip() + ";")
        for index in table.indexes:
            statements.append(str(CreateIndex(index).compile(dialect=dialect)).strip() + ";")
    return "\n\n".join(statements)
