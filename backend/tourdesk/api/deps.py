"""Shared request dependencies: bearer-token auth, notification service, error mapping."""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from tourdesk.config import get_settings
from tourdesk.database import get_db
from tourdesk.models import Reservation, User
from tourdesk.services.email_templates import NotificationService
from tourdesk.services.errors import (
    ConcurrentModification,
    InsufficientCapacity,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from tourdesk.services.notification import get_global_notifier

settings = get_settings()

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(user: User, expires_minutes: Optional[int] = None) -> str:
    """Create a signed access token for a user."""
    expire = datetime.utcnow() + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    payload = {
        "sub": str(user.id),
        "role": user.role.value,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _user_from_token(token: str, db: Session) -> User:
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
        user_id = payload.get("sub")
        if user_id is None or payload.get("type") != "access":
            raise _credentials_exception()
        user_id = int(user_id)
    except (JWTError, ValueError):
        raise _credentials_exception()

    user = db.query(User).filter(User.id == user_id).first()
    if user is None or not user.is_active:
        raise _credentials_exception()
    return user


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Optional[User]:
    """Anonymous requests get None; a present but invalid token is still a 401."""
    if credentials is None:
        return None
    return _user_from_token(credentials.credentials, db)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None:
        raise _credentials_exception()
    return _user_from_token(credentials.credentials, db)


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


def ensure_can_view(reservation: Reservation, user: User) -> None:
    if user.is_admin or (reservation.user_id is not None and reservation.user_id == user.id):
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to access this reservation")


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    return NotificationService(db, get_global_notifier())


def http_error(exc: Exception) -> HTTPException:
    """Translate a reservation domain error into an HTTP response."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (InsufficientCapacity, ConcurrentModification)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (InvalidTransition, ValidationError, ValueError)):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail="Internal error")
