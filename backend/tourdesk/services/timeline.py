import logging
from typing import Optional

from sqlalchemy.orm import Session

from tourdesk.models import ReservationTimelineEvent, User

logger = logging.getLogger(__name__)

AUTOMATED_ACTOR = "Automated system"
UNKNOWN_ACTOR = "Unknown user"


def record_event(
    db: Session,
    reservation_id: int,
    event_type: str,
    description: str,
    performed_by: Optional[int] = None,
    metadata: Optional[dict] = None,
) -> ReservationTimelineEvent:
    """Append a timeline event to the current transaction. The caller commits."""
    event = ReservationTimelineEvent(
        reservation_id=reservation_id,
        event_type=event_type,
        description=description,
        performed_by=performed_by,
        event_metadata=metadata or {},
    )
    db.add(event)
    db.flush()
    return event


def list_events(db: Session, reservation_id: int) -> list[dict]:
    events = db.query(ReservationTimelineEvent).filter(
        ReservationTimelineEvent.reservation_id == reservation_id
    ).order_by(ReservationTimelineEvent.created_at, ReservationTimelineEvent.id).all()

    user_ids = {e.performed_by for e in events if e.performed_by is not None}
    users = {}
    if user_ids:
        users = {u.id: u for u in db.query(User).filter(User.id.in_(user_ids)).all()}

    enriched = []
    for event in events:
        if event.performed_by is None:
            actor = AUTOMATED_ACTOR
        elif event.performed_by in users:
            actor = users[event.performed_by].display_name
        else:
            actor = UNKNOWN_ACTOR

        enriched.append({
            "id": event.id,
            "reservation_id": event.reservation_id,
            "event_type": event.event_type,
            "description": event.description,
            "performed_by": event.performed_by,
            "performed_by_name": actor,
            "metadata": event.event_metadata or {},
            "created_at": event.created_at,
        })
    return enriched
