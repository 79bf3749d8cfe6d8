"""
Error taxonomy for the FashionMuse core.

Storage errors are raised by the store boundary (crud/database) in place of
driver errors. Generation errors carry enough context (slot, attempt, status,
cause) for the orchestrator to decide whether to skip a slot or abort.
"""
from typing import List, Optional


class FashionMuseError(Exception):
    """Base class for every error raised by the core."""


# --- Storage / integrity ---

class IntegrityViolation(FashionMuseError):
    """A schema constraint rejected a write."""


class DuplicateEmail(IntegrityViolation):
    def __init__(self, email: Optional[str] = None):
        self.email = email
        super().__init__(f"Email already in use: {email}" if email else "Email already in use")


class MissingReference(IntegrityViolation):
    """A foreign key points at a row that does not exist (or is not owned by the caller)."""


class DuplicateAssociation(IntegrityViolation):
    """The same image was linked twice to one history entry."""


class UserNotFound(FashionMuseError):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


# --- Identity ---

class InvalidCredentials(FashionMuseError):
    def __init__(self):
        super().__init__("Invalid email or password")


# --- Credits ---

class InvalidAmount(FashionMuseError, ValueError):
    def __init__(self, amount):
        self.amount = amount
        super().__init__(f"Amount must be a positive integer, got {amount!r}")


class InsufficientCredits(FashionMuseError):
    def __init__(self, user_id: str, balance: int, requested: int):
        self.user_id = user_id
        self.balance = balance
        self.requested = requested
        super().__init__(f"Insufficient credits: balance {balance}, requested {requested}")


class UnknownPlan(FashionMuseError):
    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Unknown credit plan: {plan_id}")


# --- Generation ---

class GenerationError(FashionMuseError):
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        slot: Optional[int] = None,
        attempt: Optional[int] = None,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.slot = slot
        self.attempt = attempt
        self.status_code = status_code
        self.cause = cause

    def __str__(self) -> str:
        message = super().__str__()
        context = []
        if self.slot is not None:
            context.append(f"slot={self.slot}")
        if self.attempt is not None:
            context.append(f"attempt={self.attempt}")
        if self.status_code is not None:
            context.append(f"status={self.status_code}")
        return f"{message} ({', '.join(context)})" if context else message


class InvalidGenerationRequest(GenerationError):
    pass


class ImageTooLarge(GenerationError):
    pass


class RateLimited(GenerationError):
    pass


class MalformedResponse(GenerationError):
    pass


class UpstreamError(GenerationError):
    """Non-2xx response or transport failure. 5xx and network failures are retryable."""

    def __init__(self, message: str, *, retryable: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.retryable = retryable


class UpstreamTimeout(UpstreamError):
    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)


class GenerationCancelled(GenerationError):
    pass


class TotalGenerationFailure(GenerationError):
    def __init__(self, requested: int, failures: Optional[List[GenerationError]] = None):
        self.requested = requested
        self.failures = list(failures or [])
        detail = f": last error: {self.failures[-1]}" if self.failures else ""
        super().__init__(f"Failed to generate any of {requested} requested images{detail}")
