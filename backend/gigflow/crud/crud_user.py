from sqlalchemy.orm import Session
from typing import Optional

from .. import models
from ..models.party import Party
from ..utils.errors import NotFoundError


class CRUDUser:
    def get_user(self, db: Session, user_id: int) -> Optional[models.User]:
        return db.query(models.User).filter(models.User.id == user_id).first()

    def require_user(self, db: Session, user_id: int) -> models.User:
        db_user = self.get_user(db, user_id)
        if db_user is None:
            raise NotFoundError("User not found", {"user_id": str(user_id)})
        return db_user

    def upsert_user(
        self,
        db: Session,
        user_id: int,
        display_name: str,
        party: Party,
        is_verified: bool = False,
    ) -> models.User:
        """Mirror an identity-service user. The party kind never changes."""
        db_user = self.get_user(db, user_id)
        if db_user is None:
            db_user = models.User(
                id=user_id,
                display_name=display_name,
                party=party,
                is_verified=is_verified,
            )
            db.add(db_user)
        else:
            db_user.display_name = display_name
            db_user.is_verified = is_verified
        db.flush()
        return db_user


user = CRUDUser()
