"""BillingRecord model - one invoice line per subscription per month"""
from sqlalchemy import Column, String, Integer, Date, DateTime, ForeignKey, Index, Enum, UniqueConstraint, Uuid
from sqlalchemy.sql import func
import uuid

from lessonbook.database import Base
from lessonbook.models.enums import BillingStatus


class BillingRecord(Base):
    """Monthly bill for a recurring slot subscription (amounts in cents)"""

    __tablename__ = "billing_records"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("slot_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
    )
    teacher_id = Column(Uuid(as_uuid=True), ForeignKey("teachers.id"), nullable=False)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id"), nullable=False)
    month = Column(String(7), nullable=False)  # YYYY-MM
    invoice_number = Column(String(20), nullable=True)  # INV-YYYY-NNN, sequential per teacher
    due_date = Column(Date, nullable=True)
    expected_lessons = Column(Integer, nullable=False)
    actual_lessons = Column(Integer, nullable=False, default=0)
    rate_per_lesson = Column(Integer, nullable=False)
    total_amount = Column(Integer, nullable=False)
    status = Column(
        Enum(BillingStatus, name="billing_status"),
        nullable=False,
        default=BillingStatus.PENDING,
    )
    billed_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("subscription_id", "month", name="uq_billing_subscription_month"),
        UniqueConstraint("teacher_id", "invoice_number", name="uq_billing_teacher_invoice_number"),
        Index("idx_billing_month", "month"),
        Index("idx_billing_teacher_month", "teacher_id", "month"),
        Index("idx_billing_student_month", "student_id", "month"),
    )

    def __repr__(self):
        return (
            f"<BillingRecord(subscription_id={self.subscription_id}, month={self.month}, "
            f"total={self.total_amount}, status={self.status})>"
        )
