from datetime import datetime

from pydantic import BaseModel, Field

from app.models.slot import SlotPublic
from app.models.swap_request import SwapStatus
from app.models.user import UserSummary


class CreateSwapRequest(BaseModel):
    offered_slot_id: int = Field(..., gt=0)  # the caller's slot
    wanted_slot_id: int = Field(..., gt=0)  # the other user's slot


class RespondSwapRequest(BaseModel):
    accepted: bool


class SwappableSlot(SlotPublic):
    owner: UserSummary


class SwapRequestPublic(BaseModel):
    id: int
    status: SwapStatus
    created_at: datetime
    responded_at: datetime | None = None
    requester_id: int
    responder_id: int
    offered_slot: SlotPublic | None
    wanted_slot: SlotPublic | None
    counterpart: UserSummary | None  # requester for incoming, responder for outgoing


class SwapRequestsResponse(BaseModel):
    incoming: list[SwapRequestPublic]
    outgoing: list[SwapRequestPublic]


class SwapResponseConfirmation(BaseModel):
    request_id: int
    status: SwapStatus
    message: str
