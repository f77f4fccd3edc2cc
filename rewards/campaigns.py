from typing import Optional
from uuid import UUID, uuid4

import structlog

from .errors import RecordNotFound
from .models import Campaign, CampaignStatus, ProgressResult, WatchLog
from .store import CAMPAIGNS, USERS, WATCH_LOGS, InMemoryStorage, utc_now

logger = structlog.get_logger()


class CampaignTracker:
    """Accumulates watched intervals and completes campaigns.

    ``active -> completed`` is the only transition and it happens once the
    running total reaches ``total_intervals``. A completed campaign stays
    completed; later watch events are still written to the watch log.
    """

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def create_campaign(
        self,
        user_id: UUID,
        video_url: str,
        total_intervals: int,
        video_length_sec: int = 0,
    ) -> Campaign:
        if self.storage.get_by_id(USERS, user_id) is None:
            raise RecordNotFound(USERS, user_id)
        now = utc_now()
        campaign = Campaign(
            id=uuid4(),
            user_id=user_id,
            video_url=video_url,
            video_length_sec=video_length_sec,
            status=CampaignStatus.ACTIVE,
            total_intervals=total_intervals,
            current_intervals_completed=0,
            created_at=now,
            updated_at=now,
        )
        self.storage.insert(CAMPAIGNS, campaign.model_dump())
        return campaign

    def get_campaign(self, campaign_id: UUID) -> Campaign:
        campaign_data = self.storage.get_by_id(CAMPAIGNS, campaign_id)
        if not campaign_data:
            raise RecordNotFound(CAMPAIGNS, campaign_id)
        return Campaign(**campaign_data)

    def record_progress(self, campaign_id: UUID, intervals_completed: int) -> ProgressResult:
        if intervals_completed < 0:
            raise ValueError("intervals_completed must be non-negative")

        before: dict = {}

        def advance(row: dict) -> dict:
            before.update(row)
            new_total = row["current_intervals_completed"] + intervals_completed
            new_status = row["status"]
            if new_total >= row["total_intervals"]:
                new_status = CampaignStatus.COMPLETED
            return {"current_intervals_completed": new_total, "status": new_status}

        updated = self.storage.apply(CAMPAIGNS, campaign_id, advance)
        just_completed = (
            before["status"] != CampaignStatus.COMPLETED and updated["status"] == CampaignStatus.COMPLETED
        )

        logger.info(
            "campaign_progress_recorded",
            campaign_id=str(campaign_id),
            intervals=intervals_completed,
            total=updated["current_intervals_completed"],
        )
        if just_completed:
            logger.info("campaign_completed", campaign_id=str(campaign_id))

        return ProgressResult(
            campaign_id=campaign_id,
            current_intervals_completed=updated["current_intervals_completed"],
            total_intervals=updated["total_intervals"],
            new_status=updated["status"],
            just_completed=just_completed,
        )

    def record_watch_interval(self, user_id: UUID, campaign_id: UUID, intervals: int = 1) -> ProgressResult:
        if self.storage.get_by_id(USERS, user_id) is None:
            raise RecordNotFound(USERS, user_id)
        self.get_campaign(campaign_id)

        watch_log = WatchLog(
            id=uuid4(),
            user_id=user_id,
            campaign_id=campaign_id,
            intervals_recorded=intervals,
            timestamp=utc_now(),
        )
        self.storage.insert(WATCH_LOGS, watch_log.model_dump())
        return self.record_progress(campaign_id, intervals)

    def get_active_campaigns(self, exclude_user_id: Optional[UUID] = None) -> list[Campaign]:
        rows = self.storage.find(
            CAMPAIGNS,
            where=lambda r: exclude_user_id is None or r["user_id"] != exclude_user_id,
            status=CampaignStatus.ACTIVE,
        )
        return [Campaign(**r) for r in rows]

    def get_user_campaigns(self, user_id: UUID) -> list[Campaign]:
        rows = self.storage.find(CAMPAIGNS, user_id=user_id, order_by="created_at", descending=True)
        return [Campaign(**r) for r in rows]

    def get_all_campaigns(self) -> list[Campaign]:
        rows = self.storage.find(CAMPAIGNS, order_by="created_at", descending=True)
        return [Campaign(**r) for r in rows]

    def get_user_watch_logs(self, user_id: UUID) -> list[WatchLog]:
        rows = self.storage.find(WATCH_LOGS, user_id=user_id, order_by="timestamp", descending=True)
        return [WatchLog(**r) for r in rows]
