"""
SQLAlchemy database models
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Boolean, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from database import Base


class ChainMode(str, enum.Enum):
    """Round variant, assigned when a chain fires"""
    SINGLE = "single"        # one recipient, clock starts on arrival
    MIRRORED = "mirrored"    # two recipients, clock starts on open


class ChainStatus(str, enum.Enum):
    """Chain lifecycle; transitions only move forward"""
    SCHEDULED = "scheduled"
    FIRED = "fired"
    AWAITING_ANSWERS = "awaiting_answers"
    ADJUDICATED = "adjudicated"


class JobKind(str, enum.Enum):
    """Deferred work persisted in scheduled_jobs"""
    FIRE = "fire"
    ADJUDICATE = "adjudicate"
    MIRROR_DEADLINE = "mirror_deadline"


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


# =============================================================================
# COLLABORATOR MODELS
# =============================================================================

class User(Base):
    """SMS participant and consent state"""
    __tablename__ = "users"

    phone = Column(String(32), primary_key=True)
    consented = Column(Boolean, default=False, nullable=False)
    opted_out = Column(Boolean, default=False, nullable=False)
    alias = Column(String(100), nullable=True)

    consent_at = Column(DateTime)
    opt_out_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)


class Mantle(Base):
    """Temporary alias holder for the narrator (single row)"""
    __tablename__ = "mantle"

    id = Column(Integer, primary_key=True)
    holder = Column(String(32), nullable=False)
    alias = Column(String(100), nullable=False)
    expires_at = Column(DateTime, nullable=False)


class PhraseCall(Base):
    """Keyphrase contest flag (single row)"""
    __tablename__ = "phrase_calls"

    id = Column(Integer, primary_key=True)
    active = Column(Boolean, default=False, nullable=False)
    started_at = Column(DateTime)
    ended_at = Column(DateTime)
    winner = Column(String(32))


# =============================================================================
# WHISPER CHAIN MODELS
# =============================================================================

class Chain(Base):
    """One question round"""
    __tablename__ = "chains"

    id = Column(String(32), primary_key=True)
    question = Column(Text, nullable=False)
    participants = Column(JSON, nullable=False, default=list)  # consent-filtered phones
    mode = Column(String(20))  # single | mirrored, null until fired
    status = Column(String(30), nullable=False, default=ChainStatus.SCHEDULED.value)
    recipients = Column(JSON, default=list)
    adjudication = Column(JSON)  # verdict snapshot once adjudicated

    created_at = Column(DateTime, default=datetime.utcnow)
    scheduled_at = Column(DateTime, nullable=False)
    fired_at = Column(DateTime)
    awaiting_since = Column(DateTime)
    adjudicated_at = Column(DateTime)

    events = relationship(
        "ChainEvent",
        back_populates="chain",
        order_by="ChainEvent.id",
        cascade="all, delete-orphan",
    )
    tokens = relationship("SessionToken", back_populates="chain", order_by="SessionToken.sent_at")

    __table_args__ = (
        Index('ix_chains_status', 'status'),
    )


class ChainEvent(Base):
    """Append-only chain history; id gives the order"""
    __tablename__ = "chain_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chain_id = Column(String(32), ForeignKey("chains.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(40), nullable=False)  # fired, sent, answer, adjudicated, ...
    at = Column(DateTime, default=datetime.utcnow, nullable=False)
    payload = Column(JSON, default=dict)

    chain = relationship("Chain", back_populates="events")

    __table_args__ = (
        Index('ix_chain_events_chain_id', 'chain_id'),
        Index('ix_chain_events_type', 'chain_id', 'type'),
    )


class SessionToken(Base):
    """One recipient's response window for one chain"""
    __tablename__ = "session_tokens"

    token = Column(String(64), primary_key=True)
    chain_id = Column(String(32), ForeignKey("chains.id", ondelete="CASCADE"), nullable=False)
    recipient = Column(String(32), nullable=False)
    mode = Column(String(20), nullable=False)

    sent_at = Column(DateTime, nullable=False)
    opened_at = Column(DateTime)
    deadline = Column(DateTime)  # set once: at issue (single) or first open (mirrored)

    # Usage
    used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime)
    responded_text = Column(Text)

    chain = relationship("Chain", back_populates="tokens")

    __table_args__ = (
        Index('ix_session_tokens_chain_id', 'chain_id'),
        Index('ix_session_tokens_recipient', 'recipient', 'used'),
    )


class ScheduledJob(Base):
    """Persisted one-shot timer, re-armed on startup"""
    __tablename__ = "scheduled_jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    chain_id = Column(String(32), ForeignKey("chains.id", ondelete="CASCADE"), nullable=False)
    kind = Column(String(30), nullable=False)
    due_at = Column(DateTime, nullable=False)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime)

    __table_args__ = (
        Index('ix_scheduled_jobs_status_due', 'status', 'due_at'),
    )
