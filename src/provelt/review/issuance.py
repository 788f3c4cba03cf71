"""Badge issuance: metadata -> proof hash -> mint -> badge record -> counters.

The store and the chain cannot share a transaction, so ordering carries the
guarantees:

1. The BadgeRecord is inserted in ``reserved`` state, in the same transaction
   that claims the still-pending submission. Its UNIQUE submission_id is the
   exactly-once backstop: a concurrent or retried request loses the insert
   and never reaches the chain. A claimed submission can no longer be
   rejected.
2. The mint runs on the signer's dispatch queue with a bounded wait. Any
   chain failure leaves the record degraded, with placeholder values.
3. The badge's final state and the submission's approval are written in one
   transaction, guarded on the submission still being pending. If that write
   fails the badge state is still released on its own, so a retry can finish
   the approval from the record. The failure is logged with everything needed
   to reconcile by hand.
4. Counters are bumped with single-statement increments. Failures are logged
   and left to reconciliation; they never undo the badge.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

import structlog
from hexbytes import HexBytes
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from web3 import Web3

from provelt.chain.config import ChainConfig
from provelt.chain.dispatch import SignerDispatcher, dispatcher
from provelt.chain.gateway import ChainGateway, MintReceipt
from provelt.chain.proof import challenge_id_hash, compute_proof_hash, now_millis
from provelt.db.models import BadgeRecord, Challenge, Profile, Submission
from provelt.errors import AlreadyMinted, AlreadyProcessed, ChainError, PersistenceFailure
from provelt.records import ChallengeRecord, MintState, SubmissionRecord, SubmissionStatus
from provelt.review.metadata import build_badge_metadata, to_data_uri

logger = logging.getLogger(__name__)
audit_log = structlog.get_logger("provelt.issuance")

SIMULATED_TX_PREFIX = "sim_"
PLACEHOLDER_TOKEN_PREFIX = "token_"
PENDING_MINT_PREFIX = "pending_"


def simulated_tx_marker(issued_at_ms: int) -> str:
    return f"{SIMULATED_TX_PREFIX}{issued_at_ms}_{secrets.token_hex(4)}"


def placeholder_token_id(submission_id: str) -> str:
    return f"{PLACEHOLDER_TOKEN_PREFIX}{submission_id[:8]}"


def is_placeholder_tx(tx_signature: str | None) -> bool:
    return not tx_signature or tx_signature.startswith(SIMULATED_TX_PREFIX)


def mint_window_seconds(config: ChainConfig, timeout: float) -> float:
    """Longest a started mint can still land after its caller stopped waiting."""
    return timeout + config.rpc_timeout_seconds + config.receipt_timeout_seconds


def mint_window_cutoff_ms(window_seconds: float, now_ms: int | None = None) -> int:
    """Badges issued after this instant may still have a mint in flight."""
    return (now_millis() if now_ms is None else now_ms) - int(window_seconds * 1000)


@dataclass(frozen=True)
class IssuanceResult:
    badge_id: int
    tx_hash: str
    token_id: str
    minted_on_chain: bool
    metadata_uri: str
    mint_address: str
    proof_hash: str
    issued_at: datetime
    already_minted: bool = False
    degraded_reason: str | None = None

    @property
    def degraded(self) -> bool:
        return not self.minted_on_chain

    @classmethod
    def from_record(cls, record: BadgeRecord, already_minted: bool = False) -> IssuanceResult:
        return cls(
            badge_id=record.id,
            tx_hash=record.tx_signature,
            token_id=record.token_id,
            minted_on_chain=record.minted_on_chain,
            metadata_uri=record.metadata_uri,
            mint_address=record.mint_address,
            proof_hash=record.proof_hash,
            issued_at=datetime.fromtimestamp(record.issued_at_ms / 1000, tz=timezone.utc),
            already_minted=already_minted,
        )


def approval_values(result: IssuanceResult, now: datetime) -> dict[str, Any]:
    """Submission columns written when an issued badge approves it."""
    return {
        "status": SubmissionStatus.APPROVED.value,
        "nft_mint_address": result.mint_address,
        "nft_metadata_uri": result.metadata_uri,
        "nft_tx_signature": result.tx_hash,
        "minted_at": result.issued_at if result.minted_on_chain else None,
        "updated_at": now,
    }


def build_placeholder_record(
    submission: SubmissionRecord,
    challenge: ChallengeRecord,
    wallet_address: str,
    issued_at_ms: int,
    config: ChainConfig,
    default_image_url: str = "",
) -> BadgeRecord:
    """Reserved badge row for a submission: metadata, proof hash and placeholder chain fields.

    The same ``issued_at_ms`` feeds the metadata, the proof hash and any later
    mint, so the row alone is enough to mint the badge afterwards.
    """
    issued_at = datetime.fromtimestamp(issued_at_ms / 1000, tz=timezone.utc)
    metadata = build_badge_metadata(challenge, issued_at, default_image_url)
    proof_hash = compute_proof_hash(challenge.id, submission.user_id, submission.id, issued_at_ms)
    token_id = placeholder_token_id(submission.id)
    return BadgeRecord(
        user_id=submission.user_id,
        submission_id=submission.id,
        challenge_id=challenge.id,
        wallet_address=wallet_address,
        mint_address=config.badge_contract_address or f"{PENDING_MINT_PREFIX}{submission.id}",
        metadata_uri=to_data_uri(metadata),
        tx_signature=simulated_tx_marker(issued_at_ms),
        token_id=token_id,
        proof_hash=Web3.to_hex(proof_hash),
        issued_at_ms=issued_at_ms,
        minted_on_chain=False,
        mint_state=MintState.RESERVED.value,
        name=challenge.badge_name or f"{challenge.title} Badge",
        description=f'Badge earned for completing "{challenge.title}"',
        image_url=metadata["image"],
        attributes={
            "challenge": challenge.title,
            "category": challenge.category,
            "difficulty": challenge.difficulty.value,
            "points": challenge.points,
            "tokenId": token_id,
        },
        created_at=issued_at,
        updated_at=issued_at,
    )


async def get_badge_for_submission(db: AsyncSession, submission_id: str) -> BadgeRecord | None:
    result = await db.execute(
        select(BadgeRecord)
        .where(BadgeRecord.submission_id == submission_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


@dataclass(frozen=True)
class _ExistingBadge:
    result: IssuanceResult
    wallet_address: str
    mint_state: str
    issued_at_ms: int


class IssuanceCoordinator:
    def __init__(
        self,
        config: ChainConfig,
        gateway: ChainGateway | None = None,
        timeout: float = 60.0,
        default_image_url: str = "",
        queue: SignerDispatcher | None = None,
        redis: object | None = None,
    ) -> None:
        self.config = config
        self.gateway = gateway
        self.timeout = timeout
        self.default_image_url = default_image_url
        self.queue = queue or dispatcher
        self.redis = redis

    @property
    def minting_enabled(self) -> bool:
        return self.gateway is not None and self.config.minting_configured

    @property
    def mint_window(self) -> float:
        return mint_window_seconds(self.config, self.timeout)

    async def issue(
        self,
        db: AsyncSession,
        submission: SubmissionRecord,
        challenge: ChallengeRecord,
        wallet_address: str,
    ) -> IssuanceResult:
        """Issue the badge for a pending submission and approve it.

        When the submission already holds a badge left by an interrupted
        approval, the approval is completed from that badge and returned with
        ``already_minted=True``. Raises AlreadyProcessed when the submission was
        decided elsewhere or its issuance is still in progress.
        """
        record = build_placeholder_record(
            submission, challenge, wallet_address, now_millis(), self.config, self.default_image_url
        )
        try:
            await self._reserve(db, record)
        except AlreadyMinted as exc:
            logger.info("Badge already issued for submission %s", submission.id)
            return await self._resume(db, submission, challenge, exc.record)

        attributes = dict(record.attributes)
        result = IssuanceResult.from_record(record)
        receipt, reason = await self._mint(wallet_address, challenge, HexBytes(result.proof_hash), result.metadata_uri)

        now = datetime.now(timezone.utc)
        if receipt is not None:
            result = replace(result, tx_hash=receipt.tx_hash, token_id=receipt.token_id, minted_on_chain=True)
            badge_values: dict[str, Any] = {
                "tx_signature": receipt.tx_hash,
                "token_id": receipt.token_id,
                "minted_on_chain": True,
                "mint_state": MintState.MINTED.value,
                "attributes": {**attributes, "tokenId": receipt.token_id},
                "updated_at": now,
            }
        else:
            result = replace(result, degraded_reason=reason)
            badge_values = {"mint_state": MintState.DEGRADED.value, "updated_at": now}

        await self._settle(db, submission, challenge, wallet_address, result, badge_values)
        await self._update_counters(db, submission, challenge, wallet_address)
        await self._publish(submission, challenge, result)
        return result

    async def _reserve(self, db: AsyncSession, record: BadgeRecord) -> None:
        """Insert the badge row and claim the pending submission in one transaction.

        Raises AlreadyMinted if the submission already has a badge, and
        AlreadyProcessed if it is no longer pending.
        """
        submission_id = record.submission_id
        claim = (
            update(Submission)
            .where(
                Submission.id == submission_id,
                Submission.status == SubmissionStatus.PENDING.value,
                Submission.nft_tx_signature.is_(None),
            )
            .values(
                nft_mint_address=record.mint_address,
                nft_metadata_uri=record.metadata_uri,
                nft_tx_signature=record.tx_signature,
                updated_at=record.updated_at,
            )
        )
        db.add(record)
        try:
            await db.flush()
            claimed = await db.execute(claim)
            if claimed.rowcount == 0:
                await db.rollback()
                raise AlreadyProcessed("Submission already processed", submission_id=submission_id)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            existing = await get_badge_for_submission(db, submission_id)
            if existing is None:
                raise PersistenceFailure(
                    "Badge insert violated a constraint but no badge exists",
                    submission_id=submission_id,
                ) from None
            raise AlreadyMinted(existing)
        except SQLAlchemyError as exc:
            await db.rollback()
            raise PersistenceFailure("Could not persist badge record", submission_id=submission_id) from exc

    async def _mint(
        self,
        wallet_address: str,
        challenge: ChallengeRecord,
        proof_hash: bytes,
        metadata_uri: str,
    ) -> tuple[MintReceipt | None, str | None]:
        if self.gateway is None or not self.config.minting_configured:
            logger.info("NFT minting not configured - recording placeholder badge")
            return None, "minting not configured"
        try:
            receipt = await self.queue.submit(
                self.gateway.signer_address,
                self.gateway.mint_badge,
                wallet_address,
                challenge_id_hash(challenge.id),
                proof_hash,
                metadata_uri,
                timeout=self.timeout,
            )
        except ChainError as exc:
            logger.warning("Mint failed for %s (challenge %s): %s", wallet_address, challenge.id, exc)
            return None, f"on-chain mint pending: {exc.message}"
        return receipt, None

    async def _settle(
        self,
        db: AsyncSession,
        submission: SubmissionRecord,
        challenge: ChallengeRecord,
        wallet_address: str,
        result: IssuanceResult,
        badge_values: dict[str, Any],
    ) -> None:
        """Write the badge's final state and approve the submission together."""
        context = {
            "submission_id": submission.id,
            "badge_id": result.badge_id,
            "wallet": wallet_address,
            "challenge_id": challenge.id,
            "tx_hash": result.tx_hash,
            "token_id": result.token_id,
            "minted_on_chain": result.minted_on_chain,
        }
        try:
            await db.execute(update(BadgeRecord).where(BadgeRecord.id == result.badge_id).values(**badge_values))
            approved = await db.execute(
                update(Submission)
                .where(Submission.id == submission.id, Submission.status == SubmissionStatus.PENDING.value)
                .values(**approval_values(result, badge_values["updated_at"]))
            )
            if approved.rowcount == 0:
                # The badge state still lands; the decision on the row stands.
                await db.commit()
                audit_log.error("submission_status_conflict_after_issuance", **context)
                raise AlreadyProcessed("Submission already processed", submission_id=submission.id)
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            if result.minted_on_chain:
                audit_log.error("badge_persist_failed_after_mint", error=str(exc), **context)
            else:
                audit_log.error("submission_update_failed_after_issuance", error=str(exc), **context)
            await self._release(db, result.badge_id, badge_values)
            raise PersistenceFailure(
                "Badge issued but submission status could not be updated",
                wallet=wallet_address,
                challenge_id=challenge.id,
                submission_id=submission.id,
                tx_hash=result.tx_hash,
            ) from exc

    async def _release(self, db: AsyncSession, badge_id: int, badge_values: dict[str, Any]) -> None:
        """Record the mint outcome alone, so a retry can complete the approval."""
        try:
            await db.execute(
                update(BadgeRecord)
                .where(BadgeRecord.id == badge_id, BadgeRecord.mint_state == MintState.RESERVED.value)
                .values(**badge_values)
            )
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            audit_log.error(
                "badge_release_failed",
                badge_id=badge_id,
                mint_state=badge_values["mint_state"],
                exc_info=True,
            )

    async def _resume(
        self,
        db: AsyncSession,
        submission: SubmissionRecord,
        challenge: ChallengeRecord,
        record: BadgeRecord,
    ) -> IssuanceResult:
        """Complete an approval whose request stopped after reserving the badge.

        A reserved badge younger than the mint window belongs to a request
        that may still be minting, so it is left alone.
        """
        existing = _ExistingBadge(
            result=IssuanceResult.from_record(record, already_minted=True),
            wallet_address=record.wallet_address,
            mint_state=record.mint_state,
            issued_at_ms=record.issued_at_ms,
        )
        reserved = existing.mint_state == MintState.RESERVED.value
        if reserved and existing.issued_at_ms > mint_window_cutoff_ms(self.mint_window):
            raise AlreadyProcessed("Badge issuance already in progress", submission_id=submission.id)

        result = existing.result
        now = datetime.now(timezone.utc)
        try:
            if reserved:
                await db.execute(
                    update(BadgeRecord)
                    .where(BadgeRecord.id == result.badge_id, BadgeRecord.mint_state == MintState.RESERVED.value)
                    .values(mint_state=MintState.DEGRADED.value, updated_at=now)
                )
            approved = await db.execute(
                update(Submission)
                .where(Submission.id == submission.id, Submission.status == SubmissionStatus.PENDING.value)
                .values(**approval_values(result, now))
            )
            if approved.rowcount == 0:
                await db.rollback()
                raise AlreadyProcessed("Submission already processed", submission_id=submission.id)
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            raise PersistenceFailure(
                "Could not complete approval for the issued badge",
                submission_id=submission.id,
                tx_hash=result.tx_hash,
            ) from exc

        logger.info("Completed interrupted approval of submission %s from badge %s", submission.id, result.badge_id)
        await self._update_counters(db, submission, challenge, existing.wallet_address)
        await self._publish(submission, challenge, result)
        return result

    async def _update_counters(
        self,
        db: AsyncSession,
        submission: SubmissionRecord,
        challenge: ChallengeRecord,
        wallet_address: str,
    ) -> None:
        now = datetime.now(timezone.utc)
        try:
            await db.execute(
                update(Challenge)
                .where(Challenge.id == challenge.id)
                .values(completions_count=Challenge.completions_count + 1)
            )
            bump = {
                "total_points": Profile.total_points + challenge.points,
                "badges_count": Profile.badges_count + 1,
                "updated_at": now,
            }
            result = await db.execute(update(Profile).where(Profile.id == submission.user_id).values(**bump))
            if result.rowcount == 0:
                result = await db.execute(
                    update(Profile)
                    .where(func.lower(Profile.wallet_address) == wallet_address.lower())
                    .values(**bump)
                )
            if result.rowcount == 0:
                logger.warning("No profile found for user %s; stats not updated", submission.user_id)
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            audit_log.error(
                "stats_update_failed",
                submission_id=submission.id,
                user_id=submission.user_id,
                challenge_id=challenge.id,
                exc_info=True,
            )

    async def _publish(self, submission: SubmissionRecord, challenge: ChallengeRecord, result: IssuanceResult) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.publish(  # type: ignore[attr-defined]
                "pubsub:badge_minted",
                json.dumps({
                    "user_id": submission.user_id,
                    "submission_id": submission.id,
                    "challenge_id": challenge.id,
                    "token_id": result.token_id,
                    "minted_on_chain": result.minted_on_chain,
                    "points": challenge.points,
                }),
            )
        except Exception:
            logger.warning("Failed to publish badge_minted notification", exc_info=True)
