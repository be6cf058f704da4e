"""
Domain errors raised by the services.

Every error carries an HTTP status and a stable machine-readable code; the
FastAPI handler in app.main renders them as {"detail": ..., "code": ...}.
Raising one inside a request aborts the request's transaction, so nothing
is partially committed.
"""


class SwapError(Exception):
    status_code: int = 400
    code: str = "error"
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# --- ValidationError: malformed input, caller must fix the request ---


class ValidationError(SwapError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid request"


class SelfTrade(ValidationError):
    code = "self_trade"
    default_message = "Cannot swap with one of your own slots"


# --- NotFound ---


class NotFound(SwapError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


# --- Forbidden: actor is not the required party ---


class Forbidden(SwapError):
    status_code = 403
    code = "forbidden"
    default_message = "Not allowed"


class NotOwner(Forbidden):
    code = "not_owner"
    default_message = "Your slot not found or not owned by you"


class NotResponder(Forbidden):
    code = "not_responder"
    default_message = "Only the owner of the requested slot can respond to this swap"


# --- Conflict: state changed underneath the caller, retry with fresh data ---


class Conflict(SwapError):
    status_code = 409
    code = "conflict"
    default_message = "Slot state changed, refresh and try again"


class SlotLocked(Conflict):
    code = "slot_locked"
    default_message = "One or both slots are already involved in a pending swap"


class NotSwappable(Conflict):
    code = "not_swappable"
    default_message = "Slot is not marked as swappable"


class AlreadyResolved(Conflict):
    code = "already_resolved"
    default_message = "Swap request already processed"
