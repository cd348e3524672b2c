from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from ..core import policy
from ..crud import crud_user
from ..database import get_db
from ..schemas.user import TrustEventResponse, TrustScoreResponse, UserMirror, UserResponse
from ..services import trust_engine

router = APIRouter(tags=["users"])


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def mirror_user(user_in: UserMirror, db: Session = Depends(get_db)):
    """Mirror an identity-service user and open their trust score."""
    db_user = crud_user.user.upsert_user(
        db,
        user_id=user_in.id,
        display_name=user_in.display_name,
        party=user_in.party,
        is_verified=user_in.is_verified,
    )
    trust_engine.initialize(db, db_user.id)
    db.commit()
    db.refresh(db_user)
    return db_user


@router.get("/users/{user_id}/trust", response_model=TrustScoreResponse)
def read_trust_score(user_id: int, db: Session = Depends(get_db)):
    score = trust_engine.get_score(db, user_id)
    # decay applied on read is persisted
    db.commit()
    tier_policy = policy.policy_for(score.tier)
    return TrustScoreResponse(
        user_id=score.user_id,
        score=score.score,
        tier=score.tier,
        commission_percentage=tier_policy.commission_percentage,
        max_pending_applications=tier_policy.max_pending_applications,
        deposit_percentage=tier_policy.deposit_percentage,
        last_activity_at=score.last_activity_at,
    )


@router.get("/users/{user_id}/trust/history", response_model=List[TrustEventResponse])
def read_trust_history(user_id: int, db: Session = Depends(get_db)):
    return trust_engine.history(db, user_id)
