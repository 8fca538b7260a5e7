from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class RecurrenceSeries(Base):
    __tablename__ = "recurrence_series"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    project_id: Mapped[str | None] = mapped_column(
        ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(String(16), default="medium", server_default="medium", nullable=False)
    recurrence_type: Mapped[str] = mapped_column(String(16), nullable=False)
    recurrence_behavior: Mapped[str] = mapped_column(
        String(32), default="after_completion", server_default="after_completion", nullable=False
    )
    # Canonical JSON, present iff recurrence_type == "custom".
    recurrence_rule: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_due_date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="1", nullable=False, index=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    instances: Mapped[list["Task"]] = relationship("Task", back_populates="series")


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index(
            "uq_tasks_series_due_date",
            "recurrence_series_id",
            "due_date",
            unique=True,
            sqlite_where=text("recurrence_series_id IS NOT NULL AND deleted_at IS NULL"),
            postgresql_where=text("recurrence_series_id IS NOT NULL AND deleted_at IS NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    project_id: Mapped[str | None] = mapped_column(
        ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="open", server_default="open", nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(16), default="medium", server_default="medium", nullable=False)
    due_date: Mapped[str | None] = mapped_column(String(10), nullable=True, index=True)
    recurrence_series_id: Mapped[str | None] = mapped_column(
        ForeignKey("recurrence_series.id"), nullable=True, index=True
    )
    # Legacy inline recurrence, cleared once the task is lifted into a series.
    recurrence_type: Mapped[str] = mapped_column(String(16), default="none", server_default="none", nullable=False)
    recurrence_behavior: Mapped[str] = mapped_column(
        String(32), default="after_completion", server_default="after_completion", nullable=False
    )
    recurrence_rule: Mapped[str | None] = mapped_column(Text, nullable=True)
    recurrence_processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    series: Mapped[RecurrenceSeries | None] = relationship("RecurrenceSeries", back_populates="instances")


class TaskEvent(Base):
    __tablename__ = "task_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    task_id: Mapped[str] = mapped_column(ForeignKey("tasks.id"), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    meta_json: Mapped[str | None] = mapped_column(Text, nullable=True)
