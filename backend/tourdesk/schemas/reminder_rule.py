from pydantic import BaseModel, Field, AfterValidator
from typing import Annotated, Optional

from tourdesk.services.reminder_rules import parse_send_time


def _check_send_time(value: str) -> str:
    parse_send_time(value)
    return value


# HH:MM in the scheduler timezone
SendTime = Annotated[str, AfterValidator(_check_send_time)]


class ReminderRuleBase(BaseModel):
    days_before_deadline: int = Field(ge=0)
    enabled: bool = True
    template_type: str = "payment_reminder"
    send_time: SendTime = "09:00"


class ReminderRuleCreate(ReminderRuleBase):
    pass


class ReminderRuleUpdate(BaseModel):
    days_before_deadline: Optional[int] = Field(default=None, ge=0)
    enabled: Optional[bool] = None
    template_type: Optional[str] = None
    send_time: Optional[SendTime] = None


class ReminderRuleResponse(ReminderRuleBase):
    id: int

    class Config:
        from_attributes = True
