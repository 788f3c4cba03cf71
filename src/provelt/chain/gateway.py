"""Synchronous web3 client for the badge and staking contracts.

Every method is a blocking RPC round-trip. Async callers go through
``provelt.chain.dispatch`` so calls run off the event loop with a timeout and
transactions from one signer are submitted in order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception
from web3.logs import DISCARD

from provelt.chain.abi import BADGE_ABI, REWARD_TOKEN_ABI, STAKING_ABI
from provelt.chain.config import ChainConfig, is_valid_address
from provelt.errors import ChainUnavailable, TransactionReverted
from provelt.records import Difficulty
from provelt.staking.accrual import StakePosition

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40


@dataclass(frozen=True)
class MintReceipt:
    tx_hash: str
    token_id: str


@dataclass(frozen=True)
class BadgeInfo:
    challenge_id: int
    completed_at: int
    proof_hash: str


@contextmanager
def _rpc(operation: str) -> Iterator[None]:
    """Translate web3/transport failures into the chain error taxonomy."""
    try:
        yield
    except ContractLogicError as exc:
        raise TransactionReverted(f"{operation} reverted: {exc}", operation=operation) from exc
    except TimeExhausted as exc:
        raise ChainUnavailable(f"{operation} not confirmed in time", operation=operation) from exc
    except (Web3Exception, OSError, ValueError) as exc:
        raise ChainUnavailable(f"{operation} failed: {exc}", operation=operation) from exc


class ChainGateway:
    """Wraps the badge (ERC-721) and staking contracts behind plain methods."""

    def __init__(
        self,
        config: ChainConfig,
        private_key: str | None = None,
        web3: Web3 | None = None,
    ) -> None:
        self.config = config
        self.w3 = web3 or Web3(
            Web3.HTTPProvider(config.rpc_url, request_kwargs={"timeout": config.rpc_timeout_seconds})
        )
        key = config.signer_private_key if private_key is None else private_key
        self.account = self.w3.eth.account.from_key(key) if key and not key.startswith("your_") else None

    # --- plumbing ---

    def for_signer(self, private_key: str) -> ChainGateway:
        """Same RPC connection, different (user-held) signer."""
        return ChainGateway(self.config, private_key=private_key, web3=self.w3)

    @property
    def signer_address(self) -> str:
        if self.account is None:
            raise ChainUnavailable("No signer configured")
        return self.account.address

    def _badge(self) -> Any:
        if not is_valid_address(self.config.badge_contract_address):
            raise ChainUnavailable("Badge contract address not configured")
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(self.config.badge_contract_address), abi=BADGE_ABI
        )

    def _staking(self) -> Any:
        if not self.config.staking_configured:
            raise ChainUnavailable("Staking contract address not configured")
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(self.config.staking_contract_address), abi=STAKING_ABI
        )

    def _transact(self, call: Any, operation: str) -> Any:
        """Build, sign, send and wait for one transaction. Returns the receipt."""
        sender = self.signer_address
        with _rpc(operation):
            tx = call.build_transaction({
                "from": sender,
                "nonce": self.w3.eth.get_transaction_count(sender, "pending"),
                "chainId": self.config.chain_id,
            })
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            logger.info("Sent %s tx %s from %s", operation, Web3.to_hex(tx_hash), sender)
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.config.receipt_timeout_seconds
            )
        if receipt["status"] != 1:
            raise TransactionReverted(f"{operation} reverted", tx_hash=Web3.to_hex(tx_hash))
        return receipt

    def is_deployed(self, address: str) -> bool:
        """True when contract code exists at the address."""
        if not is_valid_address(address):
            return False
        with _rpc("getCode"):
            code = self.w3.eth.get_code(Web3.to_checksum_address(address))
        return len(code) > 0

    # --- badge contract ---

    def mint_badge(self, to: str, challenge_id_hash: int, proof_hash: bytes, metadata_uri: str) -> MintReceipt:
        """Mint a badge and read its token id from the BadgeMinted event."""
        contract = self._badge()
        call = contract.functions.mintBadge(
            Web3.to_checksum_address(to), challenge_id_hash, HexBytes(proof_hash), metadata_uri
        )
        receipt = self._transact(call, "mintBadge")
        token_id = "0"
        for event in contract.events.BadgeMinted().process_receipt(receipt, errors=DISCARD):
            token_id = str(event["args"]["tokenId"])
            break
        return MintReceipt(tx_hash=Web3.to_hex(receipt["transactionHash"]), token_id=token_id)

    def get_badges_of(self, owner: str) -> list[int]:
        with _rpc("getBadgesOf"):
            return list(self._badge().functions.getBadgesOf(Web3.to_checksum_address(owner)).call())

    def has_challenge_badge(self, owner: str, challenge_id_hash: int) -> bool:
        with _rpc("hasChallengeBadge"):
            return bool(
                self._badge().functions.hasChallengeBadge(Web3.to_checksum_address(owner), challenge_id_hash).call()
            )

    def get_badge_info(self, token_id: int) -> BadgeInfo:
        with _rpc("getBadgeInfo"):
            challenge_id, completed_at, proof_hash = self._badge().functions.getBadgeInfo(token_id).call()
        return BadgeInfo(challenge_id=challenge_id, completed_at=completed_at, proof_hash=Web3.to_hex(proof_hash))

    def owner_of(self, token_id: int) -> str:
        with _rpc("ownerOf"):
            return self._badge().functions.ownerOf(token_id).call()

    # --- staking contract ---

    def stake(self, token_id: int, tier: Difficulty) -> str:
        """Approve the staking custodian if needed, then stake. Returns the stake tx hash."""
        staking_address = Web3.to_checksum_address(self.config.staking_contract_address)
        badge = self._badge()
        with _rpc("getApproved"):
            approved = badge.functions.getApproved(token_id).call()
        if approved.lower() != staking_address.lower():
            self._transact(badge.functions.approve(staking_address, token_id), "approve")
        receipt = self._transact(self._staking().functions.stake(token_id, tier.index), "stake")
        return Web3.to_hex(receipt["transactionHash"])

    def unstake(self, token_id: int) -> str:
        receipt = self._transact(self._staking().functions.unstake(token_id), "unstake")
        return Web3.to_hex(receipt["transactionHash"])

    def claim_rewards(self, token_id: int) -> str:
        receipt = self._transact(self._staking().functions.claimRewards(token_id), "claimRewards")
        return Web3.to_hex(receipt["transactionHash"])

    def claim_all_rewards(self) -> str:
        receipt = self._transact(self._staking().functions.claimAllRewards(), "claimAllRewards")
        return Web3.to_hex(receipt["transactionHash"])

    def pending_rewards(self, token_id: int) -> int:
        with _rpc("pendingRewards"):
            return int(self._staking().functions.pendingRewards(token_id).call())

    def total_pending_rewards(self, owner: str) -> int:
        with _rpc("totalPendingRewards"):
            return int(self._staking().functions.totalPendingRewards(Web3.to_checksum_address(owner)).call())

    def get_staked_tokens(self, owner: str) -> list[int]:
        with _rpc("getStakedTokens"):
            return list(self._staking().functions.getStakedTokens(Web3.to_checksum_address(owner)).call())

    def get_stake(self, token_id: int) -> StakePosition | None:
        """On-chain stake record, or None when the token is not staked."""
        with _rpc("stakes"):
            owner, staked_at, last_claim_at, difficulty = self._staking().functions.stakes(token_id).call()
        if owner == ZERO_ADDRESS:
            return None
        return StakePosition(
            token_id=token_id,
            owner=owner,
            staked_at=int(staked_at),
            last_claim_at=int(last_claim_at),
            tier=Difficulty.from_index(int(difficulty)),
        )

    def reward_balance(self, owner: str) -> int:
        if not is_valid_address(self.config.reward_token_address):
            return 0
        token = self.w3.eth.contract(
            address=Web3.to_checksum_address(self.config.reward_token_address), abi=REWARD_TOKEN_ABI
        )
        with _rpc("balanceOf"):
            return int(token.functions.balanceOf(Web3.to_checksum_address(owner)).call())
