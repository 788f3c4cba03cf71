"""Shared FastAPI dependencies: pipeline components built from settings."""

from __future__ import annotations

from functools import lru_cache

from provelt.chain.gateway import ChainGateway
from provelt.config import get_settings
from provelt.identity.resolver import IdentityResolver
from provelt.redis_client import get_redis_or_none
from provelt.review.issuance import IssuanceCoordinator
from provelt.review.reviewer import SubmissionReviewer
from provelt.staking.accrual import RateTable, StakingAccrualEngine
from provelt.staking.client import StakingClient


@lru_cache
def get_gateway() -> ChainGateway:
    """Treasury-signed gateway. Construction opens no connection."""
    return ChainGateway(get_settings().chain_config())


@lru_cache
def get_rate_table() -> RateTable:
    settings = get_settings()
    return RateTable(settings.staking_daily_yields, decimals=settings.reward_token_decimals)


def get_coordinator() -> IssuanceCoordinator:
    settings = get_settings()
    config = settings.chain_config()
    return IssuanceCoordinator(
        config,
        gateway=get_gateway() if config.minting_configured else None,
        timeout=settings.chain_timeout_seconds,
        default_image_url=settings.default_badge_image_url,
        redis=get_redis_or_none(),
    )


def get_reviewer() -> SubmissionReviewer:
    return SubmissionReviewer(
        get_coordinator(),
        IdentityResolver(),
        default_rejection_reason=get_settings().default_rejection_reason,
    )


def get_staking_client() -> StakingClient:
    """Read-only staking client; the owner is passed per call."""
    return StakingClient(
        get_gateway(),
        StakingAccrualEngine(get_rate_table()),
        timeout=get_settings().chain_timeout_seconds,
    )
