"""Job assignment roster that drives payroll runs."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from .exceptions import AssignmentNotFoundError, InvalidAmountError
from .models import AssignmentStatus, JobAssignment
from .storage import InMemoryStorage


class JobAssignmentStore:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def assign(
        self,
        citizen_id: str,
        job_title: str,
        daily_salary: Decimal,
        job_id: Optional[str] = None,
        start_date: Optional[date] = None,
    ) -> JobAssignment:
        _check_salary(daily_salary)
        record = {
            "id": uuid4(),
            "citizen_id": citizen_id,
            "job_id": job_id,
            "job_title": job_title,
            "daily_salary": daily_salary,
            "status": AssignmentStatus.ACTIVE,
            "start_date": start_date or date.today(),
        }
        self.storage.put(self.storage.job_assignments, record["id"], record)
        return JobAssignment(**record)

    def get(self, assignment_id: UUID) -> JobAssignment:
        record = self.storage.job_assignments.get(assignment_id)
        if not record:
            raise AssignmentNotFoundError(f"Job assignment {assignment_id} not found")
        return JobAssignment(**record)

    def update_salary(self, assignment_id: UUID, daily_salary: Decimal) -> JobAssignment:
        _check_salary(daily_salary)
        return self._update(assignment_id, daily_salary=daily_salary)

    def terminate(self, assignment_id: UUID) -> JobAssignment:
        return self._update(assignment_id, status=AssignmentStatus.TERMINATED)

    def list_assignments(self, status: Optional[AssignmentStatus] = None) -> list[JobAssignment]:
        with self.storage.atomic():
            records = list(self.storage.job_assignments.values())
        assignments = [JobAssignment(**r) for r in records]
        if status:
            assignments = [a for a in assignments if a.status == status]
        return assignments

    def list_active(self) -> list[JobAssignment]:
        return self.list_assignments(AssignmentStatus.ACTIVE)

    def _update(self, assignment_id: UUID, **changes) -> JobAssignment:
        with self.storage.atomic():
            record = self.storage.job_assignments.get(assignment_id)
            if not record:
                raise AssignmentNotFoundError(f"Job assignment {assignment_id} not found")
            updated = {**record, **changes}
            self.storage.put(self.storage.job_assignments, assignment_id, updated)
        return JobAssignment(**updated)


def _check_salary(daily_salary: Decimal) -> None:
    if daily_salary <= 0:
        raise InvalidAmountError("Daily salary must be greater than 0")
