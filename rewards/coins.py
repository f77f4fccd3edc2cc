from uuid import UUID

import structlog

from .errors import RecordNotFound
from .store import USERS, InMemoryStorage

logger = structlog.get_logger()

COIN_FLOOR = 0


class CoinLedger:
    """Single entry point for every coin gain or deduction.

    Balances are clamped at zero: an overdraft is absorbed rather than
    rejected. Store failures propagate to the caller without retry.
    """

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def apply_delta(self, user_id: UUID, delta: int) -> int:
        previous, new_balance = self.storage.increment_clamped(USERS, user_id, "coins", delta, floor=COIN_FLOOR)
        self._log_delta(user_id, delta, previous, new_balance)
        return new_balance

    def apply_delta_with_record(self, user_id: UUID, delta: int, kind: str, record: dict) -> int:
        """Insert ``record`` and apply ``delta`` together; neither persists if the other fails."""
        previous, new_balance = self.storage.insert_and_increment(
            kind, record, USERS, user_id, "coins", delta, floor=COIN_FLOOR
        )
        self._log_delta(user_id, delta, previous, new_balance)
        return new_balance

    def get_balance(self, user_id: UUID) -> int:
        user = self.storage.get_by_id(USERS, user_id)
        if user is None:
            raise RecordNotFound(USERS, user_id)
        return user["coins"]

    def _log_delta(self, user_id: UUID, delta: int, previous: int, new_balance: int) -> None:
        logger.info(
            "coin_delta_applied",
            user_id=str(user_id),
            delta=delta,
            applied_delta=new_balance - previous,
            new_balance=new_balance,
        )
