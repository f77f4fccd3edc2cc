"""
Referral codes and signup orchestration.

Codes look like ``SG-ALI-4821``: a fixed prefix, the first three letters of
the user's name (``USER`` when there is no name) and a random four-digit
suffix. The suffix can collide, so the users table's unique constraint on
``referral_code`` is the real guard and a collision on insert is retried
with a fresh code.
"""

import secrets
from typing import Optional
from uuid import UUID, uuid4

import structlog

from .auth import InMemoryIdentityProvider
from .coins import CoinLedger
from .config import Settings, get_settings
from .errors import DuplicateKey, ProfileInsertFailed
from .models import Identity, Referral, User, UserRole
from .store import REFERRALS, USERS, InMemoryStorage, utc_now

logger = structlog.get_logger()

ANONYMOUS_PREFIX = "USER"
SUFFIX_MIN = 1000
SUFFIX_MAX = 9999


def generate_referral_code(name: Optional[str], prefix: str = "SG") -> str:
    label = name.upper()[:3] if name else ANONYMOUS_PREFIX
    suffix = SUFFIX_MIN + secrets.randbelow(SUFFIX_MAX - SUFFIX_MIN + 1)
    return f"{prefix}-{label}-{suffix}"


def normalize_referral_code(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    code = code.strip().upper()
    return code or None


class ReferralEngine:
    def __init__(
        self,
        storage: InMemoryStorage,
        auth: InMemoryIdentityProvider,
        coins: Optional[CoinLedger] = None,
        settings: Optional[Settings] = None,
    ):
        self.storage = storage
        self.auth = auth
        self.coins = coins or CoinLedger(storage)
        self.settings = settings or get_settings()

    def generate_code(self, name: Optional[str]) -> str:
        return generate_referral_code(name, self.settings.referral_code_prefix)

    def sign_up(
        self,
        email: str,
        password: str,
        name: Optional[str] = None,
        referral_code: Optional[str] = None,
    ) -> User:
        referral_code = normalize_referral_code(referral_code)

        identity = self.auth.create_identity(email, password, {"name": name})
        logger.info("identity_created", user_id=str(identity.id))

        user = self._insert_profile(identity, name, referral_code)

        if referral_code:
            self.process_referral_bonus(referral_code, user.id)

        return User(**self.storage.get_by_id(USERS, user.id))

    def process_referral_bonus(self, referral_code: str, new_user_id: UUID) -> Optional[Referral]:
        inviter = self.storage.get_by_unique_field(USERS, "referral_code", referral_code)
        if inviter is None:
            logger.info("referral_code_unknown", referral_code=referral_code, invitee_id=str(new_user_id))
            return None
        if inviter["id"] == new_user_id:
            return None

        referral_data = {
            "id": uuid4(),
            "inviter_id": inviter["id"],
            "invitee_id": new_user_id,
            "bonus_coins": self.settings.referral_bonus,
            "created_at": utc_now(),
        }
        try:
            self.coins.apply_delta_with_record(inviter["id"], self.settings.referral_bonus, REFERRALS, referral_data)
        except DuplicateKey:
            logger.info("referral_already_issued", inviter_id=str(inviter["id"]), invitee_id=str(new_user_id))
            return None

        logger.info(
            "referral_bonus_issued",
            inviter_id=str(inviter["id"]),
            invitee_id=str(new_user_id),
            bonus_coins=self.settings.referral_bonus,
        )
        return Referral(**referral_data)

    def get_user_referrals(self, user_id: UUID) -> list[Referral]:
        rows = self.storage.find(REFERRALS, inviter_id=user_id, order_by="created_at", descending=True)
        return [Referral(**r) for r in rows]

    def _insert_profile(self, identity: Identity, name: Optional[str], referral_code: Optional[str]) -> User:
        attempts = self.settings.referral_code_max_attempts
        for attempt in range(1, attempts + 1):
            record = self._build_user_record(identity, name, referral_code)
            try:
                return User(**self.storage.insert(USERS, record))
            except DuplicateKey as e:
                if e.field != "referral_code" or attempt == attempts:
                    raise self._rollback_identity(identity, e) from e
                logger.warning("referral_code_collision", referral_code=record["referral_code"], attempt=attempt)
            except Exception as e:
                raise self._rollback_identity(identity, e) from e

    def _build_user_record(self, identity: Identity, name: Optional[str], referral_code: Optional[str]) -> dict:
        code = self.generate_code(name)
        while code == referral_code:
            code = self.generate_code(name)
        now = utc_now()
        return {
            "id": identity.id,
            "name": name,
            "email": identity.email,
            "coins": self.settings.signup_bonus,
            "referral_code": code,
            "referred_by": referral_code,
            "role": UserRole.MEMBER,
            "created_at": now,
            "updated_at": now,
        }

    def _rollback_identity(self, identity: Identity, cause: Exception) -> ProfileInsertFailed:
        logger.error("profile_insert_failed", user_id=str(identity.id), error=str(cause))
        try:
            self.auth.delete_identity(identity.id)
        except Exception:
            logger.exception("identity_rollback_failed", user_id=str(identity.id))
        else:
            logger.info("identity_rolled_back", user_id=str(identity.id))
        return ProfileInsertFailed(f"Could not create profile for {identity.email}")
