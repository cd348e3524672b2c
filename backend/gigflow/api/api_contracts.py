from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..crud import crud_booking
from ..database import get_db
from ..models.user import User
from ..schemas.contract import ContractResponse, ContractVoid, SignatureCreate
from ..services import contract_manager
from .dependencies import ensure_booking_party, get_current_actor

router = APIRouter(tags=["contracts"])


@router.get("/contracts/{contract_id}", response_model=ContractResponse)
def read_contract(
    contract_id: int,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    contract = crud_booking.require_contract(db, contract_id)
    ensure_booking_party(contract.booking, actor)
    return contract


@router.post("/contracts/{contract_id}/sign", response_model=ContractResponse)
def sign_contract(
    contract_id: int,
    signature_in: SignatureCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    contract = contract_manager.sign(db, contract_id, actor.id, signature_in)
    db.commit()
    db.refresh(contract)
    return contract


@router.post("/contracts/{contract_id}/void", response_model=ContractResponse)
def void_contract(
    contract_id: int,
    void_in: ContractVoid,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_actor),
):
    contract = contract_manager.void(db, contract_id, actor.id, reason=void_in.reason)
    db.commit()
    db.refresh(contract)
    return contract
