from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# --- Users / auth ---

class SignUpRequest(BaseModel):
    """
    Schema for the request body when registering a new account.
    """
    name: str = Field(..., min_length=2, description="Display name.")
    email: str = Field(..., pattern=EMAIL_PATTERN, description="Unique email address.")
    password: str = Field(..., min_length=6, description="Plaintext password, hashed before storage.")

class SignInRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)

class ProfileUpdate(BaseModel):
    """
    Schema for updating a user profile.
    All fields are optional; only provided fields will be updated.
    """
    name: Optional[str] = Field(None, min_length=2, description="Updated display name.")
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN, description="Updated email address.")
    profile_image: Optional[str] = Field(None, description="Profile image reference, or null to clear it.")

    model_config = ConfigDict(
        from_attributes=True,
        extra='ignore'
    )

class UserResponse(BaseModel):
    """
    Public view of a user. The password hash never leaves the core.
    """
    id: str
    name: str
    email: str
    profile_image: Optional[str] = None
    credits: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

# --- Images / history ---

class ImageCreateRequest(BaseModel):
    image_data: str = Field(..., min_length=1, description="Data URI or encoded image payload.")
    mime_type: str = Field("image/jpeg", min_length=3)

class ImageResponse(BaseModel):
    id: str
    user_id: str
    image_data: str
    mime_type: str
    is_original: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class HistoryEntry(BaseModel):
    """
    One generation session: its label, thumbnail payload and the ordered payloads of its images.
    """
    id: str
    date: str
    time: str
    count: int
    thumbnail: str
    images: List[str]
    created_at: datetime

# --- Credits ---

class TransactionType(str, Enum):
    PURCHASE = "purchase"
    DEDUCTION = "deduction"
    REFUND = "refund"

class TransactionResponse(BaseModel):
    id: str
    user_id: str
    amount: int
    type: TransactionType
    description: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class CreditAmountRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Number of credits, strictly positive.")
    description: Optional[str] = Field(None, description="Free-text reason recorded on the transaction.")

class PurchaseRequest(BaseModel):
    plan_id: str = Field(..., min_length=1)

class BalanceResponse(BaseModel):
    user_id: str
    credits: int

class CreditPlan(BaseModel):
    id: str
    name: str
    credits: int
    price: float

class LedgerReconciliation(BaseModel):
    """
    Balance vs. the signed sum of the transaction log (purchases and refunds add, deductions subtract).
    """
    user_id: str
    balance: int
    ledger_total: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_total

# --- Generation ---

class PromptStyle(BaseModel):
    pose: str = Field("a confident, natural fashion model pose", min_length=1)
    aspect_ratio: str = Field("3:4", min_length=3)
    negative_prompt: str = ""
    theme: str = Field("studio", min_length=1)

class GenerationRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1, description="Source image: data URI, base64 payload or http(s) URL.")
    count: int = Field(..., ge=1, description="Number of variations requested.")
    style: Optional[PromptStyle] = Field(None, description="Themed prompt; omitted means the default fashion prompt pool.")

class GenerationResponse(BaseModel):
    images: List[str]
    history_id: str
    requested: int
    produced: int
