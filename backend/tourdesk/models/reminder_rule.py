from sqlalchemy import Column, Integer, String, Boolean, DateTime, CheckConstraint
from sqlalchemy.sql import func
from tourdesk.database import Base


class ReminderRule(Base):
    __tablename__ = "reminder_rules"

    id = Column(Integer, primary_key=True, index=True)
    days_before_deadline = Column(Integer, nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    template_type = Column(String(64), nullable=False, default="payment_reminder")
    send_time = Column(String(5), nullable=False, default="09:00")  # HH:MM, scheduler timezone

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("days_before_deadline >= 0", name="ck_reminder_rule_days_non_negative"),
    )
