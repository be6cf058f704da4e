from app.models.user import User, UserCreate, UserPublic, UserSummary
from app.models.refresh_token import RefreshToken
from app.models.slot import Slot, SlotCreate, SlotPublic, SlotStatus, SlotUpdate
from app.models.swap_request import SwapRequest, SwapStatus

__all__ = [
    "User",
    "UserCreate",
    "UserPublic",
    "UserSummary",
    "RefreshToken",
    "Slot",
    "SlotCreate",
    "SlotPublic",
    "SlotStatus",
    "SlotUpdate",
    "SwapRequest",
    "SwapStatus",
]
