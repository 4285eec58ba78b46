"""ORM models."""
from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class Task(Base):
    """A to-do item.

    Three kinds share the table:
      - one-off task:  is_recurring=False, original_task_id=None
      - template:      is_recurring=True,  original_task_id=None, recurring_rule set
      - instance:      is_recurring=False, original_task_id=<template id>

    original_task_id is a weak back-reference (no FK): deleting a template
    leaves its generated instances alone.
    """
    __tablename__ = "tasks"
    __table_args__ = (
        # One instance per (template, occurrence date). Generation relies on this
        # to stay idempotent when two triggers race.
        UniqueConstraint("original_task_id", "due_date", name="uq_task_instance_occurrence"),
        Index("ix_tasks_user_recurring", "user_id", "is_recurring"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    due_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    priority: Mapped[str | None] = mapped_column(String(16), nullable=True)
    tag_names: Mapped[list] = mapped_column(JSON, default=list)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False)
    recurring_rule: Mapped[str | None] = mapped_column(Text, nullable=True)
    original_task_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
