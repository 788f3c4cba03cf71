"""Badge staking model: reward accrual and stake/unstake/claim transitions.

Per token: Unstaked -> Staked(tier) -> Unstaked, with Claim as a Staked
self-loop. While staked, the custodian holds the token, so a token is never
both staked and freely owned.

Accrual uses integer arithmetic on the reward token's smallest unit:

    pending = (now - last_claim_at) * daily_units(tier) // 86_400

Multiplying before dividing keeps the error below one unit per claim.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from fractions import Fraction

from provelt.errors import AlreadyStaked, NotStaked, NotTokenOwner
from provelt.records import Difficulty

SECONDS_PER_DAY = 86_400

DEFAULT_DAILY_YIELDS: dict[Difficulty, int] = {
    Difficulty.EASY: 1,
    Difficulty.MEDIUM: 3,
    Difficulty.HARD: 5,
    Difficulty.EXPERT: 10,
}

Clock = Callable[[], int]


def system_clock() -> int:
    return int(time.time())


class RateTable:
    """Daily yield per difficulty tier, in whole reward tokens."""

    def __init__(self, daily_yields: Mapping[str | Difficulty, int] | None = None, decimals: int = 18) -> None:
        yields = daily_yields if daily_yields is not None else DEFAULT_DAILY_YIELDS
        self.decimals = decimals
        self.unit = 10**decimals
        self._daily: dict[Difficulty, int] = {Difficulty.parse(k): int(v) for k, v in yields.items()}
        missing = set(Difficulty) - set(self._daily)
        if missing:
            raise ValueError(f"Rate table missing tiers: {sorted(t.value for t in missing)}")
        if any(v < 0 for v in self._daily.values()):
            raise ValueError("Daily yields must be non-negative")

    def daily_yield(self, tier: Difficulty) -> int:
        return self._daily[tier]

    def daily_units(self, tier: Difficulty) -> int:
        return self._daily[tier] * self.unit

    def rate_per_second(self, tier: Difficulty) -> Fraction:
        """Exact per-second rate in smallest units."""
        return Fraction(self.daily_units(tier), SECONDS_PER_DAY)

    def accrue(self, tier: Difficulty, elapsed_seconds: int) -> int:
        if elapsed_seconds <= 0:
            return 0
        return elapsed_seconds * self.daily_units(tier) // SECONDS_PER_DAY

    def as_dict(self) -> dict[str, int]:
        return {tier.value: amount for tier, amount in self._daily.items()}


@dataclass(frozen=True)
class StakePosition:
    token_id: int
    owner: str
    staked_at: int
    last_claim_at: int
    tier: Difficulty

    def pending(self, rates: RateTable, now: int) -> int:
        return rates.accrue(self.tier, now - self.last_claim_at)


def _same(a: str, b: str) -> bool:
    return a.lower() == b.lower()


class StakingAccrualEngine:
    """Mirror of the staking contract's state and payout rules.

    Reads (``pending_rewards``, ``total_pending_rewards``, ``staked_tokens``)
    are pure functions of stored positions and the clock.
    """

    def __init__(self, rates: RateTable | None = None, clock: Clock | None = None) -> None:
        self.rates = rates or RateTable()
        self.clock = clock or system_clock
        self._positions: dict[int, StakePosition] = {}
        self._free_owner: dict[int, str] = {}
        self._paid: dict[str, int] = {}

    # --- state loading ---

    def register_owned(self, owner: str, token_ids: Iterable[int]) -> None:
        """Record tokens the owner holds outside the custodian."""
        for token_id in token_ids:
            if token_id not in self._positions:
                self._free_owner[token_id] = owner

    def load_position(self, position: StakePosition) -> None:
        """Adopt a stake position read from the chain."""
        self._free_owner.pop(position.token_id, None)
        self._positions[position.token_id] = position

    def forget_owner(self, owner: str) -> None:
        """Drop everything mirrored for one owner before a fresh sync."""
        for token_id in [t for t, o in self._free_owner.items() if _same(o, owner)]:
            del self._free_owner[token_id]
        for token_id in [t for t, p in self._positions.items() if _same(p.owner, owner)]:
            del self._positions[token_id]

    # --- reads ---

    def position(self, token_id: int) -> StakePosition | None:
        return self._positions.get(token_id)

    def is_staked(self, token_id: int) -> bool:
        return token_id in self._positions

    def pending_rewards(self, token_id: int, now: int | None = None) -> int:
        position = self._positions.get(token_id)
        if position is None:
            return 0
        return position.pending(self.rates, self.clock() if now is None else now)

    def total_pending_rewards(self, owner: str, now: int | None = None) -> int:
        at = self.clock() if now is None else now
        return sum(p.pending(self.rates, at) for p in self._positions.values() if _same(p.owner, owner))

    def staked_tokens(self, owner: str) -> list[int]:
        return sorted(t for t, p in self._positions.items() if _same(p.owner, owner))

    def owned_tokens(self, owner: str) -> list[int]:
        """Tokens held by the owner and available to stake."""
        return sorted(t for t, o in self._free_owner.items() if _same(o, owner))

    def rewards_paid(self, owner: str) -> int:
        return self._paid.get(owner.lower(), 0)

    # --- transitions ---

    def require_position(self, owner: str, token_id: int) -> StakePosition:
        position = self._positions.get(token_id)
        if position is None:
            raise NotStaked(f"Token {token_id} is not staked", token_id=token_id)
        if not _same(position.owner, owner):
            raise NotTokenOwner(f"Token {token_id} is not staked by {owner}", token_id=token_id)
        return position

    def _pay(self, owner: str, amount: int) -> None:
        if amount:
            key = owner.lower()
            self._paid[key] = self._paid.get(key, 0) + amount

    def stake(self, owner: str, token_id: int, tier: Difficulty | str) -> StakePosition:
        """Move a token into custody and start its accrual clock."""
        if token_id in self._positions:
            raise AlreadyStaked(f"Token {token_id} is already staked", token_id=token_id)
        holder = self._free_owner.get(token_id)
        if holder is None or not _same(holder, owner):
            raise NotTokenOwner(f"Token {token_id} is not owned by {owner}", token_id=token_id)
        now = self.clock()
        position = StakePosition(
            token_id=token_id,
            owner=holder,
            staked_at=now,
            last_claim_at=now,
            tier=Difficulty.parse(tier),
        )
        del self._free_owner[token_id]
        self._positions[token_id] = position
        return position

    def claim(self, owner: str, token_id: int) -> int:
        """Pay out pending rewards and restart the accrual clock. Stays staked."""
        position = self.require_position(owner, token_id)
        now = self.clock()
        amount = position.pending(self.rates, now)
        self._positions[token_id] = replace(position, last_claim_at=now)
        self._pay(position.owner, amount)
        return amount

    def claim_all(self, owner: str) -> int:
        now = self.clock()
        total = 0
        for token_id in self.staked_tokens(owner):
            position = self._positions[token_id]
            amount = position.pending(self.rates, now)
            self._positions[token_id] = replace(position, last_claim_at=now)
            total += amount
        self._pay(owner, total)
        return total

    def unstake(self, owner: str, token_id: int) -> int:
        """Pay out pending rewards and return custody to the owner."""
        position = self.require_position(owner, token_id)
        amount = position.pending(self.rates, self.clock())
        del self._positions[token_id]
        self._free_owner[token_id] = position.owner
        self._pay(position.owner, amount)
        return amount
