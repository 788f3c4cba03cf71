"""Resolve a submission's user id to the wallet that receives the badge.

Historical rows are inconsistent: ``user_id`` may be a profile id, a full
wallet address, or a truncated wallet prefix. Resolution walks an ordered list
of strategies and the first hit wins. Stored wallets that are not EVM
addresses (older rows hold Solana wallets) never count as a hit, so
resolution falls through to the next strategy:

1. profile by primary key, if it has a valid EVM wallet address
2. user id is itself a full wallet address
3. user id is a wallet prefix matching exactly one stored wallet
4. user id, lower-cased, matches a stored wallet address
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import NamedTuple, Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from provelt.chain.config import is_valid_address
from provelt.db.models import Profile
from provelt.errors import WalletNotFound

logger = logging.getLogger(__name__)

PARTIAL_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{4,39}$")


class Resolution(NamedTuple):
    wallet_address: str | None
    found: bool
    strategy: str | None = None


class ResolutionStrategy(Protocol):
    name: str

    async def try_resolve(self, db: AsyncSession, user_id: str) -> str | None: ...


class ProfileWalletStrategy:
    name = "profile"

    async def try_resolve(self, db: AsyncSession, user_id: str) -> str | None:
        profile = await db.get(Profile, user_id)
        if profile is not None and is_valid_address(profile.wallet_address):
            return profile.wallet_address
        return None


class FullAddressStrategy:
    name = "full_address"

    async def try_resolve(self, db: AsyncSession, user_id: str) -> str | None:
        return user_id if is_valid_address(user_id) else None


class PartialAddressStrategy:
    """Prefix match for truncated addresses. Ambiguous prefixes do not resolve."""

    name = "partial_address"

    async def try_resolve(self, db: AsyncSession, user_id: str) -> str | None:
        if not PARTIAL_ADDRESS_RE.match(user_id):
            return None
        result = await db.execute(
            select(Profile.wallet_address)
            .where(func.lower(Profile.wallet_address).like(f"{user_id.lower()}%"))
            .limit(2)
        )
        matches = [w for w in result.scalars() if is_valid_address(w)]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            logger.warning("Ambiguous wallet prefix %s matches several profiles", user_id)
        return None


class WalletLookupStrategy:
    name = "wallet_lookup"

    async def try_resolve(self, db: AsyncSession, user_id: str) -> str | None:
        result = await db.execute(
            select(Profile.wallet_address)
            .where(func.lower(Profile.wallet_address) == user_id.lower())
            .limit(1)
        )
        wallet = result.scalar_one_or_none()
        return wallet if is_valid_address(wallet) else None


DEFAULT_STRATEGIES: tuple[ResolutionStrategy, ...] = (
    ProfileWalletStrategy(),
    FullAddressStrategy(),
    PartialAddressStrategy(),
    WalletLookupStrategy(),
)


class IdentityResolver:
    def __init__(self, strategies: Sequence[ResolutionStrategy] = DEFAULT_STRATEGIES) -> None:
        self.strategies = list(strategies)

    async def resolve(self, db: AsyncSession, user_id: str) -> Resolution:
        if not user_id:
            return Resolution(None, False)
        for strategy in self.strategies:
            wallet = await strategy.try_resolve(db, user_id)
            if wallet:
                logger.debug("Resolved %s via %s -> %s", user_id, strategy.name, wallet)
                return Resolution(wallet, True, strategy.name)
        return Resolution(None, False)

    async def resolve_or_raise(self, db: AsyncSession, user_id: str) -> str:
        """Resolve to a mintable (full) address or raise WalletNotFound."""
        resolution = await self.resolve(db, user_id)
        if not resolution.found or not is_valid_address(resolution.wallet_address):
            logger.error(
                "Wallet address resolution failed for user %s (strategy=%s, wallet=%s)",
                user_id,
                resolution.strategy,
                resolution.wallet_address,
            )
            raise WalletNotFound(user_id)
        return resolution.wallet_address  # type: ignore[return-value]
