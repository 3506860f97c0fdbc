from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from src.modules.billing.service import BillingService
from src.modules.students.models import Enrollment, Student, Subject


@pytest.fixture
def student_factory(db_session: AsyncSession):
    """Create a student enrolled in one subject per fee, committed."""

    async def _create(
        number: str,
        fees: list[str],
        tenant_id: str = "greenwood",
        enrollment_active: bool = True,
    ) -> Student:
        student = Student(
            tenant_id=tenant_id,
            student_number=number,
            first_name="Student",
            last_name=number,
            is_active=True,
        )
        db_session.add(student)
        await db_session.flush()

        for index, fee in enumerate(fees):
            subject = Subject(
                tenant_id=tenant_id,
                name=f"Subject {number}-{index}",
                base_fee=Decimal(fee),
                is_active=True,
            )
            db_session.add(subject)
            await db_session.flush()
            db_session.add(
                Enrollment(
                    tenant_id=tenant_id,
                    student_id=student.id,
                    subject_id=subject.id,
                    enrollment_date=date(2025, 9, 1),
                    is_active=enrollment_active,
                )
            )
        await db_session.commit()
        return student

    return _create


@pytest.fixture
def make_service(db_session: AsyncSession):
    """Build a BillingService for a tenant with a pinned clock."""

    def _make(today: date = date(2026, 1, 1), tenant_id: str = "greenwood") -> BillingService:
        return BillingService.for_tenant(db_session, tenant_id, today=lambda: today)

    return _make
