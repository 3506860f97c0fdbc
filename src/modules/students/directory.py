"""
Directory collaborator: the billing core only needs to know whether a student
exists and which fees their active enrollments carry.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.modules.students.models import Enrollment, Student, Subject


@dataclass(frozen=True)
class EnrollmentFee:
    student_id: int
    enrollment_id: int
    subject_id: int
    subject_name: str
    base_fee: Decimal


class StudentDirectory(Protocol):
    async def student_exists(self, student_id: int) -> bool: ...

    async def get_active_enrollments(self, student_id: int) -> list[EnrollmentFee]: ...

    async def list_active_enrollments(self) -> list[EnrollmentFee]: ...


class SqlStudentDirectory:
    """StudentDirectory backed by the students/subjects/enrollments tables."""

    def __init__(self, db: AsyncSession, tenant_id: str):
        self.db = db
        self.tenant_id = tenant_id

    async def student_exists(self, student_id: int) -> bool:
        result = await self.db.execute(
            select(Student.id).where(
                Student.id == student_id,
                Student.tenant_id == self.tenant_id,
            )
        )
        return result.scalar_one_or_none() is not None

    def _enrollment_query(self):
        return (
            select(Enrollment, Subject)
            .join(Subject, Subject.id == Enrollment.subject_id)
            .join(Student, Student.id == Enrollment.student_id)
            .where(
                Enrollment.tenant_id == self.tenant_id,
                Subject.tenant_id == self.tenant_id,
                Student.tenant_id == self.tenant_id,
                Enrollment.is_active.is_(True),
                Student.is_active.is_(True),
            )
            .order_by(Enrollment.student_id, Enrollment.id)
        )

    async def get_active_enrollments(self, student_id: int) -> list[EnrollmentFee]:
        """Active enrollments of one student with their subject base fees."""
        result = await self.db.execute(
            self._enrollment_query().where(Enrollment.student_id == student_id)
        )
        return [self._to_fee(enrollment, subject) for enrollment, subject in result.all()]

    async def list_active_enrollments(self) -> list[EnrollmentFee]:
        """Active enrollments of every active student in the tenant, grouped by student."""
        result = await self.db.execute(self._enrollment_query())
        return [self._to_fee(enrollment, subject) for enrollment, subject in result.all()]

    @staticmethod
    def _to_fee(enrollment: Enrollment, subject: Subject) -> EnrollmentFee:
        return EnrollmentFee(
            student_id=enrollment.student_id,
            enrollment_id=enrollment.id,
            subject_id=subject.id,
            subject_name=subject.name,
            base_fee=Decimal(subject.base_fee),
        )
