from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from .auth import InMemoryIdentityProvider, SessionManager
from .campaigns import CampaignTracker
from .coins import CoinLedger
from .config import Settings, get_settings
from .errors import InvalidStateTransition, RecordNotFound
from .models import (
    Campaign,
    CampaignStatus,
    Identity,
    PaymentRequest,
    PaymentStatus,
    PlatformStats,
    ProgressResult,
    Referral,
    User,
    WatchLog,
)
from .referrals import ReferralEngine
from .store import CAMPAIGNS, PAYMENTS, USERS, InMemoryStorage, utc_now

logger = structlog.get_logger()


class RewardsService:
    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        auth: Optional[InMemoryIdentityProvider] = None,
        settings: Optional[Settings] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.auth = auth or InMemoryIdentityProvider()
        self.settings = settings or get_settings()
        self.coins = CoinLedger(self.storage)
        self.referrals = ReferralEngine(self.storage, self.auth, self.coins, self.settings)
        self.campaigns = CampaignTracker(self.storage)

    def create_session(self) -> SessionManager:
        return SessionManager(self.auth, self.get_profile)

    # Accounts

    def sign_up(
        self,
        email: str,
        password: str,
        name: Optional[str] = None,
        referral_code: Optional[str] = None,
    ) -> User:
        return self.referrals.sign_up(email, password, name, referral_code)

    def sign_in(self, email: str, password: str) -> Identity:
        return self.auth.sign_in(email, password)

    def get_profile(self, user_id: UUID) -> User:
        user_data = self.storage.get_by_id(USERS, user_id)
        if not user_data:
            raise RecordNotFound(USERS, user_id)
        return User(**user_data)

    def apply_coin_delta(self, user_id: UUID, delta: int) -> int:
        return self.coins.apply_delta(user_id, delta)

    def get_user_referrals(self, user_id: UUID) -> list[Referral]:
        return self.referrals.get_user_referrals(user_id)

    # Campaigns

    def create_campaign(
        self,
        user_id: UUID,
        video_url: str,
        total_intervals: int,
        video_length_sec: int = 0,
    ) -> Campaign:
        return self.campaigns.create_campaign(user_id, video_url, total_intervals, video_length_sec)

    def get_campaign(self, campaign_id: UUID) -> Campaign:
        return self.campaigns.get_campaign(campaign_id)

    def record_watch_interval(self, user_id: UUID, campaign_id: UUID, intervals: int = 1) -> ProgressResult:
        return self.campaigns.record_watch_interval(user_id, campaign_id, intervals)

    def get_active_campaigns(self, exclude_user_id: Optional[UUID] = None) -> list[Campaign]:
        return self.campaigns.get_active_campaigns(exclude_user_id)

    def get_user_campaigns(self, user_id: UUID) -> list[Campaign]:
        return self.campaigns.get_user_campaigns(user_id)

    def get_user_watch_logs(self, user_id: UUID) -> list[WatchLog]:
        return self.campaigns.get_user_watch_logs(user_id)

    # Payments

    def create_payment_request(self, user_id: UUID, amount: Decimal, coins: int) -> PaymentRequest:
        self.get_profile(user_id)
        payment = PaymentRequest(
            id=uuid4(),
            user_id=user_id,
            amount=amount,
            coins=coins,
            status=PaymentStatus.PENDING,
            timestamp=utc_now(),
        )
        self.storage.insert(PAYMENTS, payment.model_dump())
        return payment

    def get_payment_requests(self, status: Optional[PaymentStatus] = None) -> list[PaymentRequest]:
        filters = {"status": status} if status else {}
        rows = self.storage.find(PAYMENTS, order_by="timestamp", descending=True, **filters)
        return [PaymentRequest(**r) for r in rows]

    def update_payment_status(self, payment_id: UUID, status: PaymentStatus) -> PaymentRequest:
        if status == PaymentStatus.PENDING:
            raise InvalidStateTransition("A payment can only move to approved or rejected")

        def settle(row: dict) -> dict:
            if row["status"] != PaymentStatus.PENDING:
                raise InvalidStateTransition(f"Cannot change payment in {row['status'].value} state")
            return {"status": status}

        payment = PaymentRequest(**self.storage.apply(PAYMENTS, payment_id, settle))
        logger.info("payment_status_updated", payment_id=str(payment_id), status=status.value)

        if status == PaymentStatus.APPROVED and payment.coins:
            self.coins.apply_delta(payment.user_id, payment.coins)
        return payment

    # Admin

    def get_all_users(self) -> list[User]:
        rows = self.storage.find(USERS, order_by="created_at", descending=True)
        return [User(**r) for r in rows]

    def get_all_campaigns(self) -> list[Campaign]:
        return self.campaigns.get_all_campaigns()

    def get_platform_stats(self) -> PlatformStats:
        approved = self.storage.find(PAYMENTS, status=PaymentStatus.APPROVED)
        return PlatformStats(
            total_users=self.storage.count(USERS),
            total_campaigns=self.storage.count(CAMPAIGNS),
            active_campaigns=self.storage.count(CAMPAIGNS, status=CampaignStatus.ACTIVE),
            total_revenue=sum((p["amount"] for p in approved), Decimal("0")),
        )
