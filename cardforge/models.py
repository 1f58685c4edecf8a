from datetime import datetime
from typing import List, Optional
from sqlalchemy import String, DateTime, ForeignKey, Text, JSON, Integer, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

class Base(DeclarativeBase):
    pass

class GenerationSession(Base):
    __tablename__ = "generation_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True, index=True)  # UUID strings
    title: Mapped[str] = mapped_column(String, default="Character & Worldbook Generation")
    status: Mapped[str] = mapped_column(String(32), index=True, default="idle")
    user_request: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Durable copy of the generation output, written at checkpoints
    output: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    # Research state, iteration count and pending question for resuming
    snapshot: Mapped[dict] = mapped_column(JSON, default=dict)

    messages: Mapped[List["SessionMessage"]] = relationship("SessionMessage", back_populates="session", cascade="all, delete-orphan", order_by="SessionMessage.sequence")
    steps: Mapped[List["SessionStep"]] = relationship("SessionStep", back_populates="session", cascade="all, delete-orphan", order_by="SessionStep.execution_order")

class SessionMessage(Base):
    __tablename__ = "session_messages"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(ForeignKey("generation_sessions.id", ondelete="CASCADE"))
    sequence: Mapped[int] = mapped_column(Integer, index=True)  # For ordering

    role: Mapped[str] = mapped_column(String(16))
    message_type: Mapped[str] = mapped_column(String(32))
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    session: Mapped["GenerationSession"] = relationship("GenerationSession", back_populates="messages")

class SessionStep(Base):
    __tablename__ = "session_steps"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    session_id: Mapped[str] = mapped_column(ForeignKey("generation_sessions.id", ondelete="CASCADE"))
    execution_order: Mapped[int] = mapped_column(Integer)

    action: Mapped[str] = mapped_column(String(32))
    tool: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    task_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    input: Mapped[dict] = mapped_column(JSON, default=dict)
    output: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(16))
    reasoning: Mapped[str] = mapped_column(Text, default="")
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    session: Mapped["GenerationSession"] = relationship("GenerationSession", back_populates="steps")

    __table_args__ = (
        Index("ix_session_steps_order", "session_id", "execution_order", unique=True),
    )
