"""
Rewards & Campaign Ledger

This package provides:
- Coin balances with a zero floor for every gain and deduction
- Referral codes, signup bonuses and one-time inviter bonuses
- Campaign progress with a one-way active -> completed transition
- An append-only watch log as the audit trail of campaign progress
- Identity rollback when a signup fails after the identity exists
"""

from .models import (
    UserRole,
    CampaignStatus,
    PaymentStatus,
    User,
    Campaign,
    Referral,
    WatchLog,
    PaymentRequest,
)
from .coins import CoinLedger
from .referrals import ReferralEngine, generate_referral_code
from .campaigns import CampaignTracker
from .service import RewardsService

__all__ = [
    "UserRole",
    "CampaignStatus",
    "PaymentStatus",
    "User",
    "Campaign",
    "Referral",
    "WatchLog",
    "PaymentRequest",
    "CoinLedger",
    "ReferralEngine",
    "generate_referral_code",
    "CampaignTracker",
    "RewardsService",
]
