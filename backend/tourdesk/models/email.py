from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey
from sqlalchemy.sql import func
from tourdesk.database import Base
from tourdesk.models.types import value_enum
import enum


class EmailStatus(str, enum.Enum):
    SENT = "sent"
    SIMULATED = "simulated"
    FAILED = "failed"


class EmailTemplate(Base):
    __tablename__ = "email_templates"

    id = Column(Integer, primary_key=True, index=True)
    template_type = Column(String(64), unique=True, nullable=False)
    subject = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class EmailLog(Base):
    __tablename__ = "email_logs"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id", ondelete="CASCADE"), nullable=True, index=True)
    template_type = Column(String(64), nullable=True)
    recipient = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=True)
    status = Column(value_enum(EmailStatus), nullable=False)
    error_message = Column(Text, nullable=True)

    sent_at = Column(DateTime, server_default=func.now())
