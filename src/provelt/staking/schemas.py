"""Pydantic response models for staking endpoints.

Token amounts are in the reward token's smallest unit and serialized as
strings, since they routinely exceed 2**53.
"""

from __future__ import annotations

from pydantic import BaseModel


class StakedBadgeResponse(BaseModel):
    token_id: int
    tier: str
    staked_at: int
    last_claim_at: int
    pending_rewards: str


class StakingPositionResponse(BaseModel):
    owner: str
    reward_balance: str
    available: list[int]
    staked: list[StakedBadgeResponse]
    total_pending: str
    staking_available: bool


class RatesResponse(BaseModel):
    decimals: int
    daily_yields: dict[str, int]
