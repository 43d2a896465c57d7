"""create booking and billing tables

Revision ID: a1c4e9d2b7f0
Revises:
Create Date: 2025-09-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a1c4e9d2b7f0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


lesson_status = sa.Enum('SCHEDULED', 'COMPLETED', 'CANCELLED', 'MISSED', name='lesson_status')
slot_status = sa.Enum('ACTIVE', 'PAUSED', 'CANCELLED', name='slot_status')
subscription_status = sa.Enum('ACTIVE', 'PAUSED', 'CANCELLED', 'EXPIRED', name='subscription_status')
billing_status = sa.Enum('PENDING', 'BILLED', 'PAID', 'OVERDUE', 'CANCELLED', name='billing_status')


def _timestamps(updated: bool = True):
    columns = [sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False)]
    if updated:
        columns.append(
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False)
        )
    return columns


def upgrade() -> None:
    op.create_table('teachers',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('name', sa.String(length=200), nullable=False),
    sa.Column('email', sa.String(length=320), nullable=False),
    sa.Column('timezone', sa.String(length=64), nullable=False, server_default='America/Chicago'),
    sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
    *_timestamps(),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('email')
    )
    op.create_index('idx_teachers_active', 'teachers', ['is_active'], unique=False)

    op.create_table('students',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('name', sa.String(length=200), nullable=False),
    sa.Column('email', sa.String(length=320), nullable=False),
    sa.Column('timezone', sa.String(length=64), nullable=True),
    *_timestamps(updated=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('email')
    )

    op.create_table('teacher_lesson_settings',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('teacher_id', sa.UUID(), nullable=False),
    sa.Column('allows_30_min', sa.Boolean(), nullable=False, server_default='true'),
    sa.Column('allows_60_min', sa.Boolean(), nullable=False, server_default='true'),
    sa.Column('price_30_min', sa.Integer(), nullable=False),
    sa.Column('price_60_min', sa.Integer(), nullable=False),
    sa.Column('advance_booking_days', sa.Integer(), nullable=False, server_default='21'),
    *_timestamps(),
    sa.CheckConstraint('advance_booking_days >= 1 AND advance_booking_days <= 90'),
    sa.ForeignKeyConstraint(['teacher_id'], ['teachers.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('teacher_id')
    )

    op.create_table('weekly_availability',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('teacher_id', sa.UUID(), nullable=False),
    sa.Column('day_of_week', sa.Integer(), nullable=False),
    sa.Column('start_time', sa.String(length=5), nullable=False),
    sa.Column('end_time', sa.String(length=5), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
    *_timestamps(updated=False),
    sa.CheckConstraint('day_of_week >= 0 AND day_of_week <= 6'),
    sa.ForeignKeyConstraint(['teacher_id'], ['teachers.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_availability_teacher_day', 'weekly_availability', ['teacher_id', 'day_of_week'], unique=False)

    op.create_table('blocked_intervals',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('teacher_id', sa.UUID(), nullable=False),
    sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
    sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
    sa.Column('reason', sa.String(length=500), nullable=True),
    *_timestamps(updated=False),
    sa.ForeignKeyConstraint(['teacher_id'], ['teachers.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_blocked_teacher_range', 'blocked_intervals', ['teacher_id', 'start_time', 'end_time'], unique=False)

    op.create_table('recurring_slots',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('teacher_id', sa.UUID(), nullable=False),
    sa.Column('student_id', sa.UUID(), nullable=False),
    sa.Column('day_of_week', sa.Integer(), nullable=False),
    sa.Column('start_time', sa.String(length=5), nullable=False),
    sa.Column('duration_minutes', sa.Integer(), nullable=False),
    sa.Column('rate_per_lesson', sa.Integer(), nullable=False),
    sa.Column('monthly_rate', sa.Integer(), nullable=False),
    sa.Column('status', slot_status, nullable=False, server_default='ACTIVE'),
    sa.Column('booked_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
    *_timestamps(),
    sa.CheckConstraint('day_of_week >= 0 AND day_of_week <= 6'),
    sa.ForeignKeyConstraint(['teacher_id'], ['teachers.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_recurring_slots_teacher_status', 'recurring_slots', ['teacher_id', 'status'], unique=False)
    op.create_index('idx_recurring_slots_student_status', 'recurring_slots', ['student_id', 'status'], unique=False)

    op.create_table('slot_subscriptions',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('slot_id', sa.UUID(), nullable=False),
    sa.Column('student_id', sa.UUID(), nullable=False),
    sa.Column('start_month', sa.String(length=7), nullable=False),
    sa.Column('end_month', sa.String(length=7), nullable=True),
    sa.Column('monthly_rate', sa.Integer(), nullable=False),
    sa.Column('status', subscription_status, nullable=False, server_default='ACTIVE'),
    sa.Column('last_billed_month', sa.String(length=7), nullable=True),
    *_timestamps(),
    sa.ForeignKeyConstraint(['slot_id'], ['recurring_slots.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_subscriptions_status', 'slot_subscriptions', ['status'], unique=False)
    op.create_index('idx_subscriptions_slot', 'slot_subscriptions', ['slot_id'], unique=False)

    op.create_table('lessons',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('teacher_id', sa.UUID(), nullable=False),
    sa.Column('student_id', sa.UUID(), nullable=False),
    sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
    sa.Column('duration_minutes', sa.Integer(), nullable=False),
    sa.Column('status', lesson_status, nullable=False, server_default='SCHEDULED'),
    sa.Column('price', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('timezone', sa.String(length=64), nullable=False, server_default='America/Chicago'),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('recurring_slot_id', sa.UUID(), nullable=True),
    *_timestamps(),
    sa.CheckConstraint('duration_minutes IN (30, 60)'),
    sa.ForeignKeyConstraint(['teacher_id'], ['teachers.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['recurring_slot_id'], ['recurring_slots.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id')
    )
    # Store-level guard against double-booking a teacher
    op.create_index(
        'uq_lessons_teacher_start_scheduled', 'lessons', ['teacher_id', 'start_time'],
        unique=True, postgresql_where=sa.text("status = 'SCHEDULED'")
    )
    op.create_index('uq_lessons_slot_start', 'lessons', ['recurring_slot_id', 'start_time'], unique=True)
    op.create_index('idx_lessons_teacher_time', 'lessons', ['teacher_id', 'start_time'], unique=False)
    op.create_index('idx_lessons_student', 'lessons', ['student_id'], unique=False)
    op.create_index('idx_lessons_status_time', 'lessons', ['status', 'start_time'], unique=False)

    op.create_table('billing_records',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('subscription_id', sa.UUID(), nullable=False),
    sa.Column('teacher_id', sa.UUID(), nullable=False),
    sa.Column('student_id', sa.UUID(), nullable=False),
    sa.Column('month', sa.String(length=7), nullable=False),
    sa.Column('invoice_number', sa.String(length=20), nullable=True),
    sa.Column('due_date', sa.Date(), nullable=True),
    sa.Column('expected_lessons', sa.Integer(), nullable=False),
    sa.Column('actual_lessons', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('rate_per_lesson', sa.Integer(), nullable=False),
    sa.Column('total_amount', sa.Integer(), nullable=False),
    sa.Column('status', billing_status, nullable=False, server_default='PENDING'),
    sa.Column('billed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
    *_timestamps(),
    sa.ForeignKeyConstraint(['subscription_id'], ['slot_subscriptions.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['teacher_id'], ['teachers.id']),
    sa.ForeignKeyConstraint(['student_id'], ['students.id']),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('subscription_id', 'month', name='uq_billing_subscription_month'),
    sa.UniqueConstraint('teacher_id', 'invoice_number', name='uq_billing_teacher_invoice_number')
    )
    op.create_index('idx_billing_month', 'billing_records', ['month'], unique=False)
    op.create_index('idx_billing_teacher_month', 'billing_records', ['teacher_id', 'month'], unique=False)
    op.create_index('idx_billing_student_month', 'billing_records', ['student_id', 'month'], unique=False)

    op.create_table('job_executions',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('job_name', sa.String(length=100), nullable=False),
    sa.Column('executed_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('success', sa.Boolean(), nullable=False),
    sa.Column('counts', sa.JSON(), nullable=False),
    sa.Column('errors', sa.JSON(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_job_executions_name_time', 'job_executions', ['job_name', 'executed_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_job_executions_name_time', table_name='job_executions')
    op.drop_table('job_executions')
    op.drop_table('billing_records')
    op.drop_table('lessons')
    op.drop_table('slot_subscriptions')
    op.drop_table('recurring_slots')
    op.drop_table('blocked_intervals')
    op.drop_table('weekly_availability')
    op.drop_table('teacher_lesson_settings')
    op.drop_table('students')
    op.drop_table('teachers')

    bind = op.get_bind()
    for enum_type in (billing_status, lesson_status, subscription_status, slot_status):
        enum_type.drop(bind, checkfirst=True)
