"""Staking client: the accrual engine kept in sync with the staking contract.

Writes are validated against the mirrored state first so obviously invalid
requests never cost gas, then submitted through the signer's dispatch queue
with the user's own key, then applied to the mirror.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from provelt.chain.dispatch import SignerDispatcher, call_in_thread, dispatcher
from provelt.chain.gateway import ChainGateway
from provelt.errors import AlreadyStaked, NotTokenOwner
from provelt.records import Difficulty
from provelt.staking.accrual import StakePosition, StakingAccrualEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class StakedBadge:
    position: StakePosition
    pending: int


@dataclass
class StakingPosition:
    owner: str
    reward_balance: int = 0
    available: list[int] = field(default_factory=list)
    staked: list[StakedBadge] = field(default_factory=list)
    total_pending: int = 0
    staking_available: bool = True


@dataclass(frozen=True)
class StakingReceipt:
    tx_hash: str
    token_id: int | None
    amount: int


class StakingClient:
    def __init__(
        self,
        gateway: ChainGateway,
        engine: StakingAccrualEngine | None = None,
        timeout: float = 60.0,
        queue: SignerDispatcher | None = None,
    ) -> None:
        self.gateway = gateway
        self.engine = engine or StakingAccrualEngine()
        self.timeout = timeout
        self.queue = queue or dispatcher

    @property
    def owner(self) -> str:
        return self.gateway.signer_address

    async def _read(self, fn: Callable[..., T], *args: Any) -> T:
        return await call_in_thread(fn, *args, timeout=self.timeout)

    async def _write(self, fn: Callable[..., str], *args: Any) -> str:
        return await self.queue.submit(self.owner, fn, *args, timeout=self.timeout)

    async def sync(self, owner: str) -> bool:
        """Reload the owner's badges and stakes from the chain.

        Returns False when the staking contract is missing, in which case only
        owned badges are mirrored.
        """
        owned = await self._read(self.gateway.get_badges_of, owner)
        staking_live = self.gateway.config.staking_configured and await self._read(
            self.gateway.is_deployed, self.gateway.config.staking_contract_address
        )
        positions: list[StakePosition] = []
        if staking_live:
            for token_id in await self._read(self.gateway.get_staked_tokens, owner):
                position = await self._read(self.gateway.get_stake, token_id)
                if position is not None:
                    positions.append(position)
        else:
            logger.warning("Staking contract not deployed at %s", self.gateway.config.staking_contract_address)

        self.engine.forget_owner(owner)
        self.engine.register_owned(owner, owned)
        for position in positions:
            self.engine.load_position(position)
        return bool(staking_live)

    async def get_position(self, owner: str | None = None) -> StakingPosition:
        owner = owner or self.owner
        staking_live = await self.sync(owner)
        now = self.engine.clock()
        staked = [
            StakedBadge(position=p, pending=self.engine.pending_rewards(p.token_id, now))
            for p in (self.engine.position(t) for t in self.engine.staked_tokens(owner))
            if p is not None
        ]
        return StakingPosition(
            owner=owner,
            reward_balance=await self._read(self.gateway.reward_balance, owner),
            available=self.engine.owned_tokens(owner),
            staked=staked,
            total_pending=self.engine.total_pending_rewards(owner, now),
            staking_available=staking_live,
        )

    async def stake(self, token_id: int, tier: Difficulty | str) -> StakingReceipt:
        owner = self.owner
        tier = Difficulty.parse(tier)
        if self.engine.is_staked(token_id):
            raise AlreadyStaked(f"Token {token_id} is already staked", token_id=token_id)
        if token_id not in self.engine.owned_tokens(owner):
            holder = await self._read(self.gateway.owner_of, token_id)
            if holder.lower() != owner.lower():
                raise NotTokenOwner(f"Token {token_id} is not owned by {owner}", token_id=token_id)
            self.engine.register_owned(owner, [token_id])
        tx_hash = await self._write(self.gateway.stake, token_id, tier)
        self.engine.stake(owner, token_id, tier)
        logger.info("Staked token %s at tier %s for %s", token_id, tier.value, owner)
        return StakingReceipt(tx_hash=tx_hash, token_id=token_id, amount=0)

    async def unstake(self, token_id: int) -> StakingReceipt:
        owner = self.owner
        self.engine.require_position(owner, token_id)
        tx_hash = await self._write(self.gateway.unstake, token_id)
        paid = self.engine.unstake(owner, token_id)
        logger.info("Unstaked token %s for %s, paid %s", token_id, owner, paid)
        return StakingReceipt(tx_hash=tx_hash, token_id=token_id, amount=paid)

    async def claim(self, token_id: int) -> StakingReceipt:
        owner = self.owner
        self.engine.require_position(owner, token_id)
        tx_hash = await self._write(self.gateway.claim_rewards, token_id)
        paid = self.engine.claim(owner, token_id)
        return StakingReceipt(tx_hash=tx_hash, token_id=token_id, amount=paid)

    async def claim_all(self) -> StakingReceipt:
        owner = self.owner
        tx_hash = await self._write(self.gateway.claim_all_rewards)
        paid = self.engine.claim_all(owner)
        return StakingReceipt(tx_hash=tx_hash, token_id=None, amount=paid)
