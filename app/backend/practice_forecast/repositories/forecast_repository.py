"""Repository helpers for the forecast read side."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from practice_forecast.models.entities import (
    Client,
    RecurringTask,
    Skill,
    StaffAvailabilityException,
    StaffMember,
    TaskInstance,
)


class ForecastRepository:
    """Queries used by the matrix generator and client reporting."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # ---------- Skills ----------
    def list_active_skills(self) -> list[Skill]:
        return self.db.scalars(
            select(Skill).where(Skill.active.is_(True)).order_by(Skill.sequence_no.asc(), Skill.name.asc())
        ).all()

    # ---------- Tasks ----------
    def list_recurring_tasks(self, client_ids: Sequence[UUID] | None = None) -> list[RecurringTask]:
        stmt = select(RecurringTask)
        if client_ids is not None:
            stmt = stmt.where(RecurringTask.client_id.in_(list(client_ids)))
        return self.db.scalars(stmt.order_by(RecurringTask.name.asc(), RecurringTask.id.asc())).all()

    def list_task_instances(
        self,
        client_ids: Sequence[UUID] | None = None,
        due_from: date | None = None,
        due_to: date | None = None,
    ) -> list[TaskInstance]:
        stmt = select(TaskInstance)
        if client_ids is not None:
            stmt = stmt.where(TaskInstance.client_id.in_(list(client_ids)))
        if due_from is not None:
            stmt = stmt.where(TaskInstance.due_date >= due_from)
        if due_to is not None:
            stmt = stmt.where(TaskInstance.due_date <= due_to)
        return self.db.scalars(stmt.order_by(TaskInstance.due_date.asc(), TaskInstance.id.asc())).all()

    # ---------- Staff ----------
    def list_active_staff(self) -> list[StaffMember]:
        return self.db.scalars(
            select(StaffMember).where(StaffMember.status == "active").order_by(StaffMember.full_name.asc())
        ).all()

    def list_staff_by_ids(self, staff_ids: Sequence[UUID]) -> list[StaffMember]:
        if not staff_ids:
            return []
        return self.db.scalars(select(StaffMember).where(StaffMember.id.in_(list(staff_ids)))).all()

    def list_availability_exceptions(self, date_from: date, date_to: date) -> list[StaffAvailabilityException]:
        return self.db.scalars(
            select(StaffAvailabilityException)
            .where(
                StaffAvailabilityException.month_start >= date_from,
                StaffAvailabilityException.month_start <= date_to,
            )
            .order_by(StaffAvailabilityException.month_start.asc(), StaffAvailabilityException.created_at.asc())
        ).all()

    # ---------- Clients ----------
    def list_clients(self) -> list[Client]:
        return self.db.scalars(select(Client).order_by(Client.legal_name.asc())).all()

    def get_client(self, client_id: UUID) -> Client | None:
        return self.db.scalar(select(Client).where(Client.id == client_id))
