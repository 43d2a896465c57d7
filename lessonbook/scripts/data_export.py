"""
Billing Export Script

Exports one month's billing records, joined with teacher and student names,
to CSV for accounting.
Usage: python -m lessonbook.scripts.data_export --month 2025-09 --output billing_2025-09.csv
"""
import asyncio
import argparse
from pathlib import Path

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import aliased

from lessonbook.database import AsyncSessionLocal
from lessonbook.models import BillingRecord, Student, Teacher
from lessonbook.services.time_utils import month_of, parse_month, utcnow

EXPORT_COLUMNS = [
    "invoice_number",
    "month",
    "teacher_name",
    "student_name",
    "student_email",
    "expected_lessons",
    "actual_lessons",
    "rate_per_lesson",
    "total_amount",
    "status",
    "billed_at",
    "due_date",
]


async def load_billing_frame(month: str, session_factory=None) -> pd.DataFrame:
    """
    Billing records for a month as a DataFrame.

    Amount columns are cents; *_dollars columns are added for readability.
    """
    parse_month(month)
    session_factory = session_factory or AsyncSessionLocal
    teacher = aliased(Teacher)
    student = aliased(Student)

    async with session_factory() as session:
        result = await session.execute(
            select(
                BillingRecord.invoice_number,
                BillingRecord.month,
                teacher.name.label("teacher_name"),
                student.name.label("student_name"),
                student.email.label("student_email"),
                BillingRecord.expected_lessons,
                BillingRecord.actual_lessons,
                BillingRecord.rate_per_lesson,
                BillingRecord.total_amount,
                BillingRecord.status,
                BillingRecord.billed_at,
                BillingRecord.due_date,
            )
            .join(teacher, BillingRecord.teacher_id == teacher.id)
            .join(student, BillingRecord.student_id == student.id)
            .where(BillingRecord.month == month)
            .order_by(teacher.name, student.name)
        )
        rows = [dict(row._mapping) for row in result.all()]

    df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)
    if df.empty:
        return df

    df["status"] = df["status"].map(lambda s: s.value if hasattr(s, "value") else s)
    df["rate_per_lesson_dollars"] = df["rate_per_lesson"] / 100
    df["total_amount_dollars"] = df["total_amount"] / 100
    return df


async def export_billing(month: str, output_file: str) -> int:
    print(f"Exporting billing records for {month} to {output_file}...")

    df = await load_billing_frame(month)
    df.to_csv(output_file, index=False)

    total = int(df["total_amount"].sum()) if not df.empty else 0
    file_size = Path(output_file).stat().st_size / 1024  # KB
    print(f"\n✓ Export complete: {len(df)} records, total ${total / 100:,.2f}")
    print(f"  File size: {file_size:.1f} KB")
    return len(df)


def main():
    """CLI entry point"""
    parser = argparse.ArgumentParser(description="Export a month's billing records to CSV")
    parser.add_argument("--month", "-m", default=None, help="Billing month YYYY-MM (default: current month)")
    parser.add_argument("--output", "-o", default=None, help="Output file path (default: billing_<month>.csv)")

    args = parser.parse_args()
    export_month = args.month or month_of(utcnow().date())
    output = args.output or f"billing_{export_month}.csv"

    asyncio.run(export_billing(export_month, output))


if __name__ == "__main__":
    main()
