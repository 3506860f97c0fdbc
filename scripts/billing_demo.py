#!/usr/bin/env python3
"""
Walks through every billing scenario against the configured database:
monthly invoicing, advance and partial payments, pro-rated billing,
adjustments, credit and the student ledger.

Usage:
    python scripts/billing_demo.py --dry-run            # everything is rolled back at the end
    python scripts/billing_demo.py --confirm            # keep the demo data
    python scripts/billing_demo.py --dry-run --tenant demo-school
"""

import asyncio
import sys
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

# Project root on PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.database.session import engine
from src.modules.billing.schemas import AdjustmentRequest, PaymentMeta
from src.modules.billing.service import BillingService
from src.modules.invoices.models import AdjustmentType
from src.modules.payments.models import PaymentMethod
from src.modules.students.models import Enrollment, Student, Subject

SUBJECTS = [
    ("Mathematics", Decimal("5000.00")),
    ("Physics", Decimal("3000.00")),
    ("English", Decimal("2000.00")),
]

STUDENTS = [
    ("Ahmed", "Hassan", [0, 1]),
    ("Fatima", "Khan", [0, 2]),
    ("Ali", "Raza", [1]),
]


def section(title: str) -> None:
    print("\n" + "=" * 70)
    print(title)
    print("=" * 70)


async def seed(session: AsyncSession, tenant_id: str, today: date) -> list[Student]:
    """Create subjects, students and enrollments for the demo tenant."""
    suffix = datetime.now().strftime("%H%M%S")
    subjects = []
    for name, fee in SUBJECTS:
        subject = Subject(tenant_id=tenant_id, name=name, base_fee=fee)
        session.add(subject)
        subjects.append(subject)
    await session.flush()

    students = []
    for i, (first_name, last_name, subject_indexes) in enumerate(STUDENTS, start=1):
        student = Student(
            tenant_id=tenant_id,
            student_number=f"DEMO-{suffix}-{i:02d}",
            first_name=first_name,
            last_name=last_name,
        )
        session.add(student)
        await session.flush()
        for index in subject_indexes:
            session.add(
                Enrollment(
                    tenant_id=tenant_id,
                    student_id=student.id,
                    subject_id=subjects[index].id,
                    enrollment_date=today.replace(day=1),
                )
            )
        students.append(student)
    await session.commit()

    for student in students:
        print(f"  + {student.full_name} ({student.student_number})")
    return students


async def run_demo(session: AsyncSession, tenant_id: str) -> None:
    today = date.today()
    service = BillingService.for_tenant(session, tenant_id)
    cash = PaymentMeta(payment_method=PaymentMethod.CASH, received_by="demo-cashier")

    section("1. Demo data")
    students = await seed(session, tenant_id, today)
    first, second, third = students

    section("2. Monthly invoicing")
    invoices = await service.generate_monthly_invoices(today)
    for invoice in invoices:
        print(f"  {invoice.invoice_number}  student={invoice.student_id}  total={invoice.total}")
    rerun = await service.generate_monthly_invoices(today)
    print(f"  Re-run created {len(rerun)} invoices (already billed students are skipped)")

    section("3. Advance payment covering two months")
    advance = await service.process_advance_payment(first.id, Decimal("16000.00"), cash)
    print(f"  Receipt {advance.payment.receipt_number} for {advance.payment.amount}")
    for allocation in advance.allocations:
        print(f"  -> {allocation.invoice_number}: {allocation.amount}")
    print(f"  Remaining credit: {advance.remaining_credit}")

    section("4. Partial payment")
    second_invoice = next(inv for inv in invoices if inv.student_id == second.id)
    bank = PaymentMeta(
        payment_method=PaymentMethod.BANK_TRANSFER,
        transaction_number="TXN-DEMO-001",
        received_by="demo-cashier",
    )
    partial = await service.process_partial_payment(second_invoice.id, Decimal("3000.00"), bank)
    print(f"  Receipt {partial.payment.receipt_number}, new balance {partial.new_balance}")

    section("5. Pro-rated billing")
    mid_month = today.replace(day=15)
    prorated = await service.generate_prorated_invoice(third.id, mid_month, is_full_month=False)
    print(f"  {prorated.invoice_number}: {prorated.total} ({prorated.notes})")
    full = await service.generate_prorated_invoice(third.id, mid_month, is_full_month=True)
    print(f"  {full.invoice_number}: {full.total} ({full.notes})")

    section("6. Adjustments")
    discount = await service.apply_invoice_adjustment(
        second_invoice.id,
        AdjustmentRequest(
            adjustment_type=AdjustmentType.DISCOUNT,
            amount=Decimal("1000.00"),
            reason="Sibling discount",
            applied_by="demo-manager",
        ),
    )
    print(f"  Discount: {discount.updated_invoice}")
    late_fee = await service.apply_invoice_adjustment(
        second_invoice.id,
        AdjustmentRequest(
            adjustment_type=AdjustmentType.LATE_FEE,
            amount=Decimal("500.00"),
            reason="Late payment",
            applied_by="demo-manager",
        ),
    )
    print(f"  Late fee: {late_fee.updated_invoice}")

    section("7. Student ledger")
    for student in students:
        ledger = await service.get_student_ledger(student.id)
        summary = ledger.summary
        print(
            f"  {student.full_name}: invoiced={summary.total_invoiced} "
            f"paid={summary.total_paid} outstanding={summary.total_outstanding} "
            f"credit={summary.credit_balance}"
        )


async def main():
    """Entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Billing walkthrough on a demo tenant")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run everything inside one transaction and roll it back",
    )
    parser.add_argument(
        "--confirm",
        action="store_true",
        help="Keep the demo data",
    )
    parser.add_argument(
        "--tenant",
        default=settings.default_tenant_id,
        help="Tenant id to create the demo data under",
    )
    args = parser.parse_args()

    if not args.dry_run and not args.confirm:
        print("ERROR: pass --dry-run or --confirm")
        sys.exit(1)

    print(f"Environment: {settings.app_env}")
    print(f"Tenant: {args.tenant}")
    print(f"Mode: {'DRY-RUN' if args.dry_run else 'CONFIRM'}")

    async with engine.connect() as connection:
        outer = await connection.begin()
        # Service commits become savepoint releases inside the outer transaction
        session = AsyncSession(
            bind=connection,
            expire_on_commit=False,
            join_transaction_mode="create_savepoint",
        )
        try:
            await run_demo(session, args.tenant)
        except Exception as e:
            print(f"\nDemo failed: {e}")
            await outer.rollback()
            raise
        finally:
            await session.close()

        if args.dry_run:
            await outer.rollback()
            print("\nDry run: all changes rolled back")
        else:
            await outer.commit()
            print("\nDemo data kept")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
