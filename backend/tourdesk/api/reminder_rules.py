from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from tourdesk.database import get_db
from tourdesk.models import ReminderRule, User
from tourdesk.schemas import ReminderRuleCreate, ReminderRuleResponse, ReminderRuleUpdate
from tourdesk.services.errors import ReminderRuleNotFound
from tourdesk.api.deps import http_error, require_admin

router = APIRouter()


def _get_rule(db: Session, rule_id: int) -> ReminderRule:
    rule = db.query(ReminderRule).filter(ReminderRule.id == rule_id).first()
    if not rule:
        raise http_error(ReminderRuleNotFound(rule_id))
    return rule


@router.get("", response_model=List[ReminderRuleResponse])
async def list_reminder_rules(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return db.query(ReminderRule).order_by(ReminderRule.days_before_deadline.desc()).all()


@router.post("", response_model=ReminderRuleResponse, status_code=201)
async def create_reminder_rule(
    rule: ReminderRuleCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    db_rule = ReminderRule(**rule.model_dump())
    db.add(db_rule)
    db.commit()
    db.refresh(db_rule)
    return db_rule


@router.put("/{rule_id}", response_model=ReminderRuleResponse)
async def update_reminder_rule(
    rule_id: int,
    rule_update: ReminderRuleUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    rule = _get_rule(db, rule_id)

    update_data = rule_update.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        if value is not None:
            setattr(rule, field, value)

    db.commit()
    db.refresh(rule)
    return rule


@router.delete("/{rule_id}")
async def delete_reminder_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    rule = _get_rule(db, rule_id)
    db.delete(rule)
    db.commit()
    return {"status": "deleted", "id": rule_id}
