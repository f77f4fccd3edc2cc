from typing import Optional
from uuid import UUID

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .errors import (
    DuplicateKey,
    IdentityCreationFailed,
    InvalidCredentials,
    InvalidStateTransition,
    ProfileInsertFailed,
    RecordNotFound,
    RewardsError,
    StoreUnavailable,
    user_message,
)
from .logging import setup_logging
from .models import (
    Campaign,
    CoinDeltaRequest,
    CoinDeltaResponse,
    CreateCampaignRequest,
    CreatePaymentRequest,
    Identity,
    PaymentRequest,
    PaymentStatus,
    PlatformStats,
    ProgressResult,
    Referral,
    SignInRequest,
    SignUpRequest,
    SignUpResponse,
    UpdatePaymentStatusRequest,
    User,
    WatchIntervalRequest,
    WatchLog,
)
from .service import RewardsService

logger = structlog.get_logger()

ERROR_STATUS: dict[type, int] = {
    RecordNotFound: status.HTTP_404_NOT_FOUND,
    DuplicateKey: status.HTTP_409_CONFLICT,
    IdentityCreationFailed: status.HTTP_400_BAD_REQUEST,
    InvalidStateTransition: status.HTTP_400_BAD_REQUEST,
    InvalidCredentials: status.HTTP_401_UNAUTHORIZED,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    ProfileInsertFailed: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _status_for(exc: RewardsError) -> int:
    for kind, code in ERROR_STATUS.items():
        if isinstance(exc, kind):
            return code
    return status.HTTP_400_BAD_REQUEST


def create_app(service: Optional[RewardsService] = None) -> FastAPI:
    settings = get_settings()
    setup_logging(settings)
    rewards_service = service or RewardsService(settings=settings)

    app = FastAPI(
        title="SG Rewards API",
        description="Coins, referrals and campaign progress for the watch-and-earn platform",
        version=settings.app_version,
    )
    app.state.rewards_service = rewards_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RewardsError)
    async def rewards_error_handler(request: Request, exc: RewardsError) -> JSONResponse:
        code = _status_for(exc)
        if code >= 500:
            logger.error("request_failed", path=request.url.path, error=str(exc), kind=type(exc).__name__)
        return JSONResponse(status_code=code, content={"detail": user_message(exc), "kind": type(exc).__name__})

    @app.exception_handler(ValueError)
    async def value_error_handler(_request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "sg-rewards"}

    @app.post("/auth/signup", response_model=SignUpResponse, status_code=status.HTTP_201_CREATED, tags=["Auth"])
    def sign_up(request: SignUpRequest) -> SignUpResponse:
        user = rewards_service.sign_up(request.email, request.password, request.name, request.referral_code)
        return SignUpResponse(user=user, message="Account created successfully")

    @app.post("/auth/signin", response_model=Identity, tags=["Auth"])
    def sign_in(request: SignInRequest) -> Identity:
        return rewards_service.sign_in(request.email, request.password)

    @app.get("/users/{user_id}", response_model=User, tags=["Users"])
    def get_profile(user_id: UUID) -> User:
        return rewards_service.get_profile(user_id)

    @app.post("/users/{user_id}/coins", response_model=CoinDeltaResponse, tags=["Users"])
    def apply_coin_delta(user_id: UUID, request: CoinDeltaRequest) -> CoinDeltaResponse:
        new_balance = rewards_service.apply_coin_delta(user_id, request.delta)
        return CoinDeltaResponse(user_id=user_id, new_balance=new_balance)

    @app.get("/users/{user_id}/referrals", response_model=list[Referral], tags=["Users"])
    def get_user_referrals(user_id: UUID) -> list[Referral]:
        return rewards_service.get_user_referrals(user_id)

    @app.get("/users/{user_id}/campaigns", response_model=list[Campaign], tags=["Users"])
    def get_user_campaigns(user_id: UUID) -> list[Campaign]:
        return rewards_service.get_user_campaigns(user_id)

    @app.get("/users/{user_id}/watch-logs", response_model=list[WatchLog], tags=["Users"])
    def get_user_watch_logs(user_id: UUID) -> list[WatchLog]:
        return rewards_service.get_user_watch_logs(user_id)

    @app.post("/campaigns", response_model=Campaign, status_code=status.HTTP_201_CREATED, tags=["Campaigns"])
    def create_campaign(request: CreateCampaignRequest) -> Campaign:
        return rewards_service.create_campaign(
            request.user_id, request.video_url, request.total_intervals, request.video_length_sec
        )

    @app.get("/campaigns/active", response_model=list[Campaign], tags=["Campaigns"])
    def get_active_campaigns(exclude_user_id: Optional[UUID] = None) -> list[Campaign]:
        return rewards_service.get_active_campaigns(exclude_user_id)

    @app.get("/campaigns/{campaign_id}", response_model=Campaign, tags=["Campaigns"])
    def get_campaign(campaign_id: UUID) -> Campaign:
        return rewards_service.get_campaign(campaign_id)

    @app.post("/campaigns/{campaign_id}/watch", response_model=ProgressResult, tags=["Campaigns"])
    def record_watch_interval(campaign_id: UUID, request: WatchIntervalRequest) -> ProgressResult:
        return rewards_service.record_watch_interval(request.user_id, campaign_id, request.intervals)

    @app.post("/payments", response_model=PaymentRequest, status_code=status.HTTP_201_CREATED, tags=["Payments"])
    def create_payment(request: CreatePaymentRequest) -> PaymentRequest:
        return rewards_service.create_payment_request(request.user_id, request.amount, request.coins)

    @app.get("/payments", response_model=list[PaymentRequest], tags=["Payments"])
    def get_payments(payment_status: Optional[PaymentStatus] = None) -> list[PaymentRequest]:
        return rewards_service.get_payment_requests(payment_status)

    @app.post("/payments/{payment_id}/status", response_model=PaymentRequest, tags=["Payments"])
    def update_payment_status(payment_id: UUID, request: UpdatePaymentStatusRequest) -> PaymentRequest:
        return rewards_service.update_payment_status(payment_id, request.status)

    @app.get("/admin/users", response_model=list[User], tags=["Admin"])
    def get_all_users() -> list[User]:
        return rewards_service.get_all_users()

    @app.get("/admin/campaigns", response_model=list[Campaign], tags=["Admin"])
    def get_all_campaigns() -> list[Campaign]:
        return rewards_service.get_all_campaigns()

    @app.get("/admin/stats", response_model=PlatformStats, tags=["Admin"])
    def get_platform_stats() -> PlatformStats:
        return rewards_service.get_platform_stats()

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
