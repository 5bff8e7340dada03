from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from tourdesk.database import get_db
from tourdesk.models import Passenger, User
from tourdesk.schemas import DocumentStatusUpdate, PassengerResponse
from tourdesk.services.timeline import record_event
from tourdesk.api.deps import require_admin

router = APIRouter()


@router.put("/{passenger_id}/document-status", response_model=PassengerResponse)
async def update_document_status(
    passenger_id: int,
    payload: DocumentStatusUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    passenger = db.query(Passenger).filter(Passenger.id == passenger_id).first()
    if not passenger:
        raise HTTPException(status_code=404, detail="Passenger not found")

    old_status = passenger.document_status
    passenger.document_status = payload.document_status
    passenger.document_notes = payload.document_notes

    if old_status != payload.document_status:
        record_event(
            db,
            passenger.reservation_id,
            "document_reviewed",
            f'Documents of {passenger.full_name} marked "{payload.document_status.value}"',
            performed_by=admin.id,
            metadata={
                "passenger_id": passenger.id,
                "old_status": old_status.value,
                "new_status": payload.document_status.value,
            },
        )

    db.commit()
    db.refresh(passenger)
    return passenger
