"""Immutable chain configuration passed into the gateway at construction."""

from __future__ import annotations

import re
from dataclasses import dataclass

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def is_valid_address(address: str | None) -> bool:
    """Check for a full 0x-prefixed 20-byte hex address."""
    return bool(address) and ADDRESS_RE.match(address) is not None


@dataclass(frozen=True)
class ChainConfig:
    rpc_url: str
    chain_id: int
    explorer_url: str = ""
    badge_contract_address: str = ""
    staking_contract_address: str = ""
    reward_token_address: str = ""
    signer_private_key: str = ""
    rpc_timeout_seconds: float = 10.0
    receipt_timeout_seconds: float = 120.0

    @property
    def minting_configured(self) -> bool:
        """True when both a badge contract and a usable treasury key are present."""
        key = self.signer_private_key
        return (
            self.badge_contract_address.startswith("0x")
            and bool(key)
            and not key.startswith("your_")
        )

    @property
    def staking_configured(self) -> bool:
        return is_valid_address(self.staking_contract_address)

    def explorer_url_for(self, hash_or_address: str, kind: str = "tx") -> str:
        """Block explorer link for a transaction hash or an address."""
        return f"{self.explorer_url.rstrip('/')}/{kind}/{hash_or_address}"
