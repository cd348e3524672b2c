from .user import UserMirror, UserResponse, TrustScoreResponse, TrustEventResponse
from .opportunity import OpportunityCreate, OpportunityResponse
from .application import ApplicationCreate, ApplicationRespond, ApplicationResponse
from .negotiation import OfferTerms, NegotiationRespond, NegotiationResponse
from .contract import (
    ContractTerms,
    ContractResponse,
    ContractVoid,
    PaymentScheduleItem,
    SignatureCreate,
)
from .booking import (
    BookingResponse,
    CancelRequest,
    CancellationResponse,
    ChecklistUpdate,
    CompletionConfirm,
    DisputeCreate,
    DisputeResponse,
)
from .payment import ChargeIntentResponse, MilestoneResponse, PaymentRecordResponse
