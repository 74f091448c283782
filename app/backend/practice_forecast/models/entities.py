"""ORM entities read by the capacity forecast pipeline."""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from practice_forecast.db.base import Base

JSONList = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class TaskStatus(str, enum.Enum):
    UNSCHEDULED = "Unscheduled"
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELED = "Canceled"


class TaskPriority(str, enum.Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


class RecurrenceType(str, enum.Enum):
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    ANNUALLY = "Annually"
    CUSTOM = "Custom"


class AvailabilityExceptionKind(str, enum.Enum):
    LEAVE = "leave"
    OVERRIDE = "override"


class Skill(Base):
    __tablename__ = "skills"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(String(512), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sequence_no: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fee_rate: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class StaffMember(Base):
    __tablename__ = "staff_members"
    __table_args__ = (
        CheckConstraint("weekly_hours >= 0", name="ck_staff_members_weekly_hours_non_negative"),
        Index("ix_staff_members_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    weekly_hours: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=Decimal("40.00"))
    assigned_skills: Mapped[list[str]] = mapped_column(JSONList, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class StaffAvailabilityException(Base):
    __tablename__ = "staff_availability_exceptions"
    __table_args__ = (
        CheckConstraint("hours >= 0", name="ck_staff_availability_exceptions_hours_non_negative"),
        Index("ix_staff_availability_exceptions_staff_month", "staff_id", "month_start"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    staff_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("staff_members.id"), nullable=False)
    month_start: Mapped[date] = mapped_column(Date, nullable=False)
    kind: Mapped[AvailabilityExceptionKind] = mapped_column(
        SQLEnum(
            AvailabilityExceptionKind,
            name="availability_exception_kind",
            values_callable=_enum_values,
        ),
        nullable=False,
    )
    hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    note: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Client(Base):
    __tablename__ = "clients"
    __table_args__ = (Index("ix_clients_staff_liaison_id", "staff_liaison_id"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    legal_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Active")
    expected_monthly_revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    staff_liaison_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("staff_members.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class RecurringTask(Base):
    __tablename__ = "recurring_tasks"
    __table_args__ = (
        CheckConstraint("estimated_hours >= 0", name="ck_recurring_tasks_hours_non_negative"),
        CheckConstraint("recurrence_interval >= 1", name="ck_recurring_tasks_interval_positive"),
        Index("ix_recurring_tasks_client_id", "client_id"),
        Index("ix_recurring_tasks_active", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    estimated_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    required_skills: Mapped[list[str]] = mapped_column(JSONList, nullable=False, default=list)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="Other")
    priority: Mapped[TaskPriority] = mapped_column(
        SQLEnum(TaskPriority, name="task_priority", values_callable=_enum_values),
        nullable=False,
        default=TaskPriority.MEDIUM,
    )
    status: Mapped[TaskStatus] = mapped_column(
        SQLEnum(TaskStatus, name="task_status", values_callable=_enum_values),
        nullable=False,
        default=TaskStatus.UNSCHEDULED,
    )
    preferred_staff_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("staff_members.id"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    recurrence_type: Mapped[RecurrenceType] = mapped_column(
        SQLEnum(RecurrenceType, name="recurrence_type", values_callable=_enum_values),
        nullable=False,
    )
    recurrence_interval: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    weekdays: Mapped[list[int] | None] = mapped_column(JSONList, nullable=True)
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    month_of_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    custom_offset_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TaskInstance(Base):
    __tablename__ = "task_instances"
    __table_args__ = (
        CheckConstraint("estimated_hours >= 0", name="ck_task_instances_hours_non_negative"),
        UniqueConstraint("recurring_task_id", "due_date", name="uq_task_instances_template_due_date"),
        Index("ix_task_instances_client_due", "client_id", "due_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False)
    recurring_task_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("recurring_tasks.id"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    estimated_hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)
    required_skills: Mapped[list[str]] = mapped_column(JSONList, nullable=False, default=list)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="Other")
    priority: Mapped[TaskPriority] = mapped_column(
        SQLEnum(TaskPriority, name="task_priority", values_callable=_enum_values),
        nullable=False,
        default=TaskPriority.MEDIUM,
    )
    status: Mapped[TaskStatus] = mapped_column(
        SQLEnum(TaskStatus, name="task_status", values_callable=_enum_values),
        nullable=False,
        default=TaskStatus.UNSCHEDULED,
    )
    preferred_staff_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("staff_members.id"), nullable=True
    )
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
