"""SQLModel ORM tables for the task store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel

DEFAULT_UPDATE_INTERVAL_SECONDS = 600


class TaskRow(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    coverage: str = Field(sa_column=Column(Text, nullable=False, unique=True))
    url: str | None = None
    expiration_date: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    update_interval: int = DEFAULT_UPDATE_INTERVAL_SECONDS
    last_updated: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    added_date: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    average_runtime: float | None = None


class TaskStatRow(SQLModel, table=True):
    __tablename__ = "taskstats"  # type: ignore[bad-override]
    __table_args__ = (Index("ix_taskstats_task_timestamp", "task_id", "timestamp"),)

    stat_id: int | None = Field(default=None, primary_key=True)
    task_id: int = Field(
        sa_column=Column(ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
    )
    timestamp: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    timing: int
