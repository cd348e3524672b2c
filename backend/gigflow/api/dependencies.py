from fastapi import Depends, Header, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.user import User
from ..utils.errors import AuthorizationError, error_response


def get_current_actor(
    x_user_id: int | None = Header(default=None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the acting user from the identity header.

    Identity itself is verified upstream; here the id only has to match a
    mirrored user.
    """
    if x_user_id is None:
        raise error_response(
            "Missing actor identity",
            {"X-User-Id": "required"},
            status.HTTP_401_UNAUTHORIZED,
            error_code="unauthenticated",
        )
    user = db.query(User).filter(User.id == x_user_id).first()
    if user is None:
        raise error_response(
            "Unknown actor",
            {"X-User-Id": str(x_user_id)},
            status.HTTP_401_UNAUTHORIZED,
            error_code="unauthenticated",
        )
    return user


def ensure_booking_party(booking, actor: User) -> None:
    if booking.side_of(actor.id) is None:
        raise AuthorizationError("Not a party to this booking")
