"""Staking read endpoints. Writes need the owner's signer and go through StakingClient."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from provelt.chain.config import is_valid_address
from provelt.dependencies import get_rate_table, get_staking_client
from provelt.errors import InvalidInput
from provelt.staking.accrual import RateTable
from provelt.staking.client import StakingClient
from provelt.staking.schemas import RatesResponse, StakedBadgeResponse, StakingPositionResponse

router = APIRouter(prefix="/api/v1/staking", tags=["Staking"])


@router.get("/rates", response_model=RatesResponse)
async def get_rates(rates: RateTable = Depends(get_rate_table)) -> RatesResponse:  # noqa: B008
    """Daily reward yield per difficulty tier, in whole tokens."""
    return RatesResponse(decimals=rates.decimals, daily_yields=rates.as_dict())


@router.get("/{owner}", response_model=StakingPositionResponse)
async def get_position(
    owner: str,
    client: StakingClient = Depends(get_staking_client),  # noqa: B008
) -> StakingPositionResponse:
    """Owned, staked and pending-reward view for a wallet."""
    if not is_valid_address(owner):
        raise InvalidInput("Invalid wallet address", owner=owner)
    position = await client.get_position(owner)
    return StakingPositionResponse(
        owner=position.owner,
        reward_balance=str(position.reward_balance),
        available=position.available,
        staked=[
            StakedBadgeResponse(
                token_id=badge.position.token_id,
                tier=badge.position.tier.value,
                staked_at=badge.position.staked_at,
                last_claim_at=badge.position.last_claim_at,
                pending_rewards=str(badge.pending),
            )
            for badge in position.staked
        ],
        total_pending=str(position.total_pending),
        staking_available=position.staking_available,
    )
