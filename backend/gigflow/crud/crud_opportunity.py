from sqlalchemy.orm import Session
from typing import Optional

from .. import models
from ..utils.errors import NotFoundError


def get_opportunity(db: Session, opportunity_id: int, lock: bool = False) -> Optional[models.Opportunity]:
    query = db.query(models.Opportunity).filter(models.Opportunity.id == opportunity_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def require_opportunity(db: Session, opportunity_id: int, lock: bool = False) -> models.Opportunity:
    opportunity = get_opportunity(db, opportunity_id, lock=lock)
    if opportunity is None:
        raise NotFoundError("Opportunity not found", {"opportunity_id": str(opportunity_id)})
    return opportunity
