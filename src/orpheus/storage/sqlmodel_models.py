"""SQLModel ORM tables for the dispatch audit log."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class DispatchEvent(SQLModel, table=True):
    __tablename__ = "dispatch_events"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_dispatch_events_task_time", "task_id", "created_at"),
        Index("idx_dispatch_events_kind_time", "kind", "created_at"),
    )

    seq: int | None = Field(default=None, primary_key=True)
    event_id: str = Field(unique=True, index=True)
    kind: str = Field(index=True)
    task_id: str = Field(index=True)
    backend_id: str | None = Field(default=None, index=True)
    payload_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
