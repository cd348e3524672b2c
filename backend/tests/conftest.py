from datetime import datetime, time, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Optional

import pytest
from dotenv import load_dotenv

# Load environment variables for tests before the app settings are read
load_dotenv(Path(__file__).resolve().parents[1] / ".env.test")

from gigflow import models  # noqa: E402
from gigflow.core import policy  # noqa: E402
from gigflow.core.config import settings  # noqa: E402
from gigflow.crud import crud_user  # noqa: E402
from gigflow.database import Base, SessionLocal, engine  # noqa: E402
from gigflow.models.opportunity import SlotCategory  # noqa: E402
from gigflow.models.party import Party  # noqa: E402
from gigflow.schemas.contract import SignatureCreate  # noqa: E402
from gigflow.schemas.opportunity import OpportunityCreate  # noqa: E402
from gigflow.services import (  # noqa: E402
    application_registry,
    booking_orchestrator,
    contract_manager,
    opportunities,
    payment_ledger,
    trust_engine,
)
from gigflow.services.payment_ledger import GatewayConfirmation  # noqa: E402

NOW = datetime(2030, 3, 1, 12, 0, 0)

ARTIST_ID = 1
ORGANIZER_ID = 2


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Keep documents and outbound calls inside the test sandbox."""
    monkeypatch.setattr(settings, "CONTRACT_DOCUMENT_DIR", str(tmp_path / "contracts"))
    monkeypatch.setattr(settings, "DOCUMENT_STORE_URL", "")
    monkeypatch.setattr(settings, "NOTIFICATION_WEBHOOK_URL", "")
    monkeypatch.setattr(settings, "PAYMENT_WEBHOOK_SECRET", "")


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def now():
    return NOW


class Flow:
    """Builds records through the real services, all at a fixed clock."""

    def __init__(self, db, now: datetime):
        self.db = db
        self.now = now

    def user(self, user_id: int, party: Party, verified: bool = True, score: Optional[int] = None):
        db_user = crud_user.user.upsert_user(
            self.db, user_id, f"{party.value} {user_id}", party, is_verified=verified
        )
        trust = trust_engine.initialize(self.db, user_id, now=self.now)
        if score is not None:
            trust.score = score
            trust.tier = policy.tier_for_score(score)
            self.db.flush()
        return db_user

    def parties(self):
        artist = crud_user.user.get_user(self.db, ARTIST_ID) or self.user(ARTIST_ID, Party.ARTIST)
        organizer = crud_user.user.get_user(self.db, ORGANIZER_ID) or self.user(ORGANIZER_ID, Party.ORGANIZER)
        return artist, organizer

    def opportunity(
        self,
        owner_id: int = ORGANIZER_ID,
        days_out: int = 60,
        slot: SlotCategory = SlotCategory.HEADLINE,
        currency: str = "USD",
    ):
        data = OpportunityCreate(
            title="Friday night headline",
            event_date=(self.now + timedelta(days=days_out)).date(),
            start_time=time(20, 0),
            end_time=time(23, 0),
            slot=slot,
            budget_min=Decimal("5000.00"),
            budget_max=Decimal("15000.00"),
            currency=currency,
            genres=["Jazz", "jazz", "Soul"],
            application_deadline=self.now + timedelta(days=min(10, days_out - 1)),
        )
        return opportunities.create_opportunity(self.db, owner_id, data, now=self.now)

    def apply(self, artist_id: int, opportunity_id: int, fee: str = "10000.00"):
        return application_registry.submit(
            self.db, artist_id, opportunity_id, Decimal(fee), "Happy to play", now=self.now
        )

    def booking(self, fee: str = "10000.00", days_out: int = 60):
        artist, organizer = self.parties()
        opportunity = self.opportunity(organizer.id, days_out=days_out)
        application = self.apply(artist.id, opportunity.id, fee=fee)
        application_registry.respond(self.db, application.id, organizer.id, "accept", now=self.now)
        return application.booking

    def sign(self, booking, user_id: int, at: Optional[datetime] = None):
        return contract_manager.sign(
            self.db,
            booking.contract.id,
            user_id,
            SignatureCreate(signature_data=f"signed by {user_id}", ip_address="10.0.0.1", user_agent="pytest"),
            now=at or self.now,
        )

    def executed_booking(self, **kwargs):
        booking = self.booking(**kwargs)
        self.sign(booking, booking.artist_id)
        self.sign(booking, booking.organizer_id)
        return booking

    def pay(self, milestone, transaction_id: Optional[str] = None, amount: Optional[Decimal] = None):
        confirmation = GatewayConfirmation(
            transaction_id=transaction_id or f"tx-{milestone.id}",
            intent_id=None,
            status="success",
            amount=milestone.amount if amount is None else amount,
            currency=milestone.currency,
        )
        return booking_orchestrator.record_payment(self.db, milestone.id, confirmation, now=self.now)

    def confirmed_booking(self, **kwargs):
        booking = self.executed_booking(**kwargs)
        self.pay(payment_ledger.deposit_milestone(booking))
        booking_orchestrator.update_checklist(self.db, booking.id, booking.organizer_id, True, now=self.now)
        return booking

    def milestone(self, booking, kind):
        return next(m for m in booking.milestones if m.kind is kind)


@pytest.fixture
def flow(db, now):
    return Flow(db, now)
