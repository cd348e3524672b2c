from sqlalchemy import update
from sqlalchemy.orm import Session
from typing import List, Optional

from .. import models
from ..utils.errors import LimitExceededError, NotFoundError


def get_application(db: Session, application_id: int, lock: bool = False) -> Optional[models.Application]:
    query = db.query(models.Application).filter(models.Application.id == application_id)
    if lock:
        query = query.with_for_update()
    return query.first()


def require_application(db: Session, application_id: int, lock: bool = False) -> models.Application:
    application = get_application(db, application_id, lock=lock)
    if application is None:
        raise NotFoundError("Application not found", {"application_id": str(application_id)})
    return application


def get_for_artist_and_opportunity(
    db: Session, artist_id: int, opportunity_id: int
) -> Optional[models.Application]:
    return (
        db.query(models.Application)
        .filter(
            models.Application.artist_id == artist_id,
            models.Application.opportunity_id == opportunity_id,
        )
        .first()
    )


def open_siblings(db: Session, application: models.Application) -> List[models.Application]:
    """Other applications on the same opportunity that still hold a slot."""
    return (
        db.query(models.Application)
        .filter(
            models.Application.opportunity_id == application.opportunity_id,
            models.Application.id != application.id,
            models.Application.status.in_(list(models.OPEN_APPLICATION_STATUSES)),
        )
        .order_by(models.Application.id.asc())
        .all()
    )


def pending_count(db: Session, artist_id: int) -> int:
    quota = db.get(models.ArtistApplicationQuota, artist_id)
    return int(quota.pending_count) if quota else 0


def _ensure_quota_row(db: Session, artist_id: int) -> None:
    if db.get(models.ArtistApplicationQuota, artist_id) is None:
        db.add(models.ArtistApplicationQuota(artist_id=artist_id, pending_count=0))
        db.flush()


def reserve_pending_slot(db: Session, artist_id: int, limit: int) -> None:
    """Take one pending-application slot for the artist or raise.

    The check and the increment are one conditional UPDATE, so two
    concurrent submissions cannot both squeeze under the limit.
    """
    _ensure_quota_row(db, artist_id)
    quota = models.ArtistApplicationQuota
    result = db.execute(
        update(quota)
        .where(quota.artist_id == artist_id, quota.pending_count < limit)
        .values(pending_count=quota.pending_count + 1)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise LimitExceededError(
            "Pending application limit reached",
            {"pending_applications": f"limit is {limit}"},
        )


def release_pending_slot(db: Session, artist_id: int) -> None:
    quota = models.ArtistApplicationQuota
    db.execute(
        update(quota)
        .where(quota.artist_id == artist_id, quota.pending_count > 0)
        .values(pending_count=quota.pending_count - 1)
        .execution_options(synchronize_session="fetch")
    )


def open_for_opportunity(db: Session, opportunity_id: int) -> List[models.Application]:
    return (
        db.query(models.Application)
        .filter(
            models.Application.opportunity_id == opportunity_id,
            models.Application.status.in_(list(models.OPEN_APPLICATION_STATUSES)),
        )
        .order_by(models.Application.id.asc())
        .all()
    )
