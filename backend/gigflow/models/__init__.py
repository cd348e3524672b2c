from .base import BaseModel, utcnow
from .party import Capability, Party, Side
from .user import User
from .trust import TrustReason, TrustScore, TrustScoreEvent, TrustTier
from .opportunity import Opportunity, OpportunityStatus, SlotCategory
from .application import (
    OPEN_APPLICATION_STATUSES,
    RESPONDABLE_APPLICATION_STATUSES,
    Application,
    ApplicationStatus,
    ArtistApplicationQuota,
)
from .negotiation import Negotiation, NegotiationOffer, NegotiationStatus
from .booking import Booking, BookingStatus, CompletionConfirmation
from .contract import (
    AWAITING_SIGNATURE_STATUSES,
    Contract,
    ContractSignature,
    ContractStatus,
    SignatureMethod,
)
from .payment import (
    PAYABLE_MILESTONE_STATUSES,
    EscrowStatus,
    GatewayTransaction,
    MilestoneKind,
    MilestoneStatus,
    Payee,
    PaymentMilestone,
    PaymentRecord,
    PaymentRecordKind,
)
from .cancellation import CancellationReason, CancellationRecord
from .dispute import Dispute, DisputeStatus
from .outbox import OutboxEvent

__all__ = [
    "BaseModel",
    "utcnow",
    "Capability",
    "Party",
    "Side",
    "User",
    "TrustReason",
    "TrustScore",
    "TrustScoreEvent",
    "TrustTier",
    "Opportunity",
    "OpportunityStatus",
    "SlotCategory",
    "OPEN_APPLICATION_STATUSES",
    "RESPONDABLE_APPLICATION_STATUSES",
    "Application",
    "ApplicationStatus",
    "ArtistApplicationQuota",
    "Negotiation",
    "NegotiationOffer",
    "NegotiationStatus",
    "Booking",
    "BookingStatus",
    "CompletionConfirmation",
    "AWAITING_SIGNATURE_STATUSES",
    "Contract",
    "ContractSignature",
    "ContractStatus",
    "SignatureMethod",
    "PAYABLE_MILESTONE_STATUSES",
    "EscrowStatus",
    "GatewayTransaction",
    "MilestoneKind",
    "MilestoneStatus",
    "Payee",
    "PaymentMilestone",
    "PaymentRecord",
    "PaymentRecordKind",
    "CancellationReason",
    "CancellationRecord",
    "Dispute",
    "DisputeStatus",
    "OutboxEvent",
]
