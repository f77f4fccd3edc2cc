from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, model_validator


class UserRole(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"


class CampaignStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class User(BaseModel):
    id: UUID
    name: Optional[str] = None
    email: str
    coins: int = Field(default=0, ge=0)
    referral_code: str
    referred_by: Optional[str] = None
    role: UserRole = UserRole.MEMBER
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def _not_self_referred(self) -> "User":
        if self.referred_by is not None and self.referred_by == self.referral_code:
            raise ValueError("A user cannot be their own referrer")
        return self

    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class Campaign(BaseModel):
    id: UUID
    user_id: UUID
    video_url: str
    video_length_sec: int = Field(default=0, ge=0)
    status: CampaignStatus = CampaignStatus.ACTIVE
    total_intervals: int = Field(..., gt=0)
    current_intervals_completed: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    def is_completed(self) -> bool:
        return self.status == CampaignStatus.COMPLETED


class Referral(BaseModel):
    id: UUID
    inviter_id: UUID
    invitee_id: UUID
    bonus_coins: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WatchLog(BaseModel):
    id: UUID
    user_id: UUID
    campaign_id: UUID
    intervals_recorded: int = Field(..., ge=0)
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)


class PaymentRequest(BaseModel):
    id: UUID
    user_id: UUID
    amount: Decimal = Field(..., gt=0)
    coins: int = Field(..., ge=0)
    status: PaymentStatus = PaymentStatus.PENDING
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)

    def can_transition(self) -> bool:
        return self.status == PaymentStatus.PENDING


class Identity(BaseModel):
    id: UUID
    email: str
    attrs: dict = Field(default_factory=dict)


class SignUpRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=6)
    name: Optional[str] = None
    referral_code: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "email": "viewer@example.com",
            "password": "hunter22",
            "name": "Alice",
            "referral_code": "SG-BOB-4821"
        }
    })


class SignInRequest(BaseModel):
    email: str
    password: str


class SignUpResponse(BaseModel):
    user: User
    message: str


class CoinDeltaRequest(BaseModel):
    delta: int


class CoinDeltaResponse(BaseModel):
    user_id: UUID
    new_balance: int


class CreateCampaignRequest(BaseModel):
    user_id: UUID
    video_url: str
    video_length_sec: int = Field(default=0, ge=0)
    total_intervals: int = Field(..., gt=0)


class WatchIntervalRequest(BaseModel):
    user_id: UUID
    intervals: int = Field(default=1, ge=0)


class ProgressResult(BaseModel):
    campaign_id: UUID
    current_intervals_completed: int
    total_intervals: int
    new_status: CampaignStatus
    just_completed: bool = False


class CreatePaymentRequest(BaseModel):
    user_id: UUID
    amount: Decimal = Field(..., gt=0)
    coins: int = Field(..., ge=0)


class UpdatePaymentStatusRequest(BaseModel):
    status: PaymentStatus


class PlatformStats(BaseModel):
    total_users: int
    total_campaigns: int
    active_campaigns: int
    total_revenue: Decimal
