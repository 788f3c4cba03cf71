"""Reconciliation jobs that restore the store from its source rows.

Profile and challenge counters are a denormalized, eventually consistent view:
issuance bumps them with single-statement increments and tolerates failures.
The jobs here recompute them from badge records and approved submissions, fill
in rows a crash left behind, and upgrade degraded badges once the chain is
reachable. Every job is idempotent and safe to run on a schedule.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from hexbytes import HexBytes
from sqlalchemy import ColumnElement, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from provelt.chain.config import ChainConfig, is_valid_address
from provelt.chain.dispatch import SignerDispatcher, call_in_thread, dispatcher
from provelt.chain.gateway import ChainGateway
from provelt.chain.proof import challenge_id_hash
from provelt.db.models import BadgeRecord, Challenge, Profile, Submission
from provelt.errors import ChainError, ChainUnavailable, InvalidInput, NotFound
from provelt.identity.resolver import IdentityResolver
from provelt.records import ChallengeRecord, MintState, ProfileRecord, SubmissionRecord, SubmissionStatus
from provelt.review.issuance import (
    IssuanceResult,
    approval_values,
    build_placeholder_record,
    mint_window_cutoff_ms,
    mint_window_seconds,
)

logger = logging.getLogger(__name__)
audit_log = structlog.get_logger("provelt.reconciliation")

USERNAME_WALLET_RE = re.compile(r"^(0x[a-fA-F0-9]{40})(?:_|$)")


@dataclass(frozen=True)
class ProfileReconciliation:
    profile_id: str
    total_points: int
    badges_count: int
    previous_points: int
    previous_badges: int

    @property
    def changed(self) -> bool:
        return self.total_points != self.previous_points or self.badges_count != self.previous_badges


@dataclass
class UpgradeSummary:
    adopted: int = 0
    minted: int = 0
    failed: int = 0
    skipped: int = 0


def _owned_by(profile: ProfileRecord, user_col: Any, wallet_col: Any | None = None) -> ColumnElement[bool]:
    clauses = [user_col == profile.id]
    if profile.wallet_address:
        wallet = profile.wallet_address.lower()
        clauses.append(func.lower(user_col) == wallet)
        if wallet_col is not None:
            clauses.append(func.lower(wallet_col) == wallet)
    return or_(*clauses)


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


async def recompute_profile(db: AsyncSession, profile_id: str) -> ProfileReconciliation:
    """Set badges_count and total_points from source rows.

    badges_count = badge records held by the profile (by id or wallet);
    total_points = points of the profile's approved submissions.
    """
    row = await db.get(Profile, profile_id, populate_existing=True)
    if row is None:
        raise NotFound("Profile not found", profile_id=profile_id)
    profile = ProfileRecord.from_row(row)

    badges = await db.scalar(
        select(func.count(BadgeRecord.id)).where(
            _owned_by(profile, BadgeRecord.user_id, BadgeRecord.wallet_address)
        )
    )
    points = await db.scalar(
        select(func.coalesce(func.sum(Challenge.points), 0))
        .select_from(Submission)
        .join(Challenge, Challenge.id == Submission.challenge_id)
        .outerjoin(BadgeRecord, BadgeRecord.submission_id == Submission.id)
        .where(
            Submission.status == SubmissionStatus.APPROVED.value,
            _owned_by(profile, Submission.user_id, BadgeRecord.wallet_address),
        )
    )
    result = ProfileReconciliation(
        profile_id=profile.id,
        total_points=int(points or 0),
        badges_count=int(badges or 0),
        previous_points=profile.total_points,
        previous_badges=profile.badges_count,
    )
    if result.changed:
        await db.execute(
            update(Profile)
            .where(Profile.id == profile.id)
            .values(
                total_points=result.total_points,
                badges_count=result.badges_count,
                updated_at=datetime.now(timezone.utc),
            )
        )
        logger.info(
            "Profile %s reconciled: points %d -> %d, badges %d -> %d",
            profile.id,
            result.previous_points,
            result.total_points,
            result.previous_badges,
            result.badges_count,
        )
    await db.commit()
    return result


async def recompute_all_profiles(db: AsyncSession) -> int:
    """Recompute every profile. Returns how many changed."""
    profile_ids = list((await db.scalars(select(Profile.id).order_by(Profile.id))).all())
    changed = 0
    for profile_id in profile_ids:
        try:
            if (await recompute_profile(db, profile_id)).changed:
                changed += 1
        except InvalidInput as exc:
            logger.warning("Skipping profile %s: %s", profile_id, exc.message)
    return changed


async def recompute_challenge_completions(db: AsyncSession) -> int:
    """completions_count = number of approved submissions per challenge."""
    approved = (
        select(func.count(Submission.id))
        .where(
            Submission.challenge_id == Challenge.id,
            Submission.status == SubmissionStatus.APPROVED.value,
        )
        .scalar_subquery()
    )
    result = await db.execute(
        update(Challenge).where(Challenge.completions_count != approved).values(completions_count=approved)
    )
    await db.commit()
    return result.rowcount or 0


async def backfill_profile_wallets(db: AsyncSession) -> int:
    """Fill a missing wallet_address from a ``0x<address>_...`` username."""
    rows = (
        await db.execute(
            select(Profile.id, Profile.username).where(
                or_(Profile.wallet_address.is_(None), Profile.wallet_address == "")
            )
        )
    ).all()
    filled = 0
    for profile_id, username in rows:
        match = USERNAME_WALLET_RE.match(username or "")
        if match is None:
            continue
        await db.execute(
            update(Profile).where(Profile.id == profile_id).values(wallet_address=match.group(1).lower())
        )
        filled += 1
    await db.commit()
    if filled:
        logger.info("Backfilled wallet address on %d profiles", filled)
    return filled


# ---------------------------------------------------------------------------
# Missing rows
# ---------------------------------------------------------------------------


async def repair_missing_badges(
    db: AsyncSession,
    config: ChainConfig,
    resolver: IdentityResolver | None = None,
    default_image_url: str = "",
) -> int:
    """Give every approved submission without a badge record a degraded one."""
    resolver = resolver or IdentityResolver()
    rows = (
        await db.scalars(
            select(Submission)
            .outerjoin(BadgeRecord, BadgeRecord.submission_id == Submission.id)
            .where(Submission.status == SubmissionStatus.APPROVED.value, BadgeRecord.id.is_(None))
        )
    ).all()
    pending: list[tuple[SubmissionRecord, ChallengeRecord, datetime]] = []
    for row in rows:
        try:
            pending.append((SubmissionRecord.from_row(row), ChallengeRecord.from_row(row.challenge), row.updated_at))
        except InvalidInput as exc:
            logger.warning("Skipping submission %s: %s", row.id, exc.message)

    created = 0
    for submission, challenge, approved_at in pending:
        resolution = await resolver.resolve(db, submission.user_id)
        if not resolution.found or not is_valid_address(resolution.wallet_address):
            logger.warning("Skipping submission %s: no wallet for user %s", submission.id, submission.user_id)
            continue
        issued_at_ms = int(approved_at.replace(tzinfo=approved_at.tzinfo or timezone.utc).timestamp() * 1000)
        record = build_placeholder_record(
            submission, challenge, resolution.wallet_address, issued_at_ms, config, default_image_url
        )
        record.mint_state = MintState.DEGRADED.value
        db.add(record)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            continue
        created += 1
        logger.info("Created missing badge record for submission %s", submission.id)
    return created


def _settled_before(cutoff_ms: int) -> ColumnElement[bool]:
    """Badge rows no in-flight issuance can still write to."""
    return or_(
        BadgeRecord.mint_state != MintState.RESERVED.value,
        BadgeRecord.issued_at_ms <= cutoff_ms,
    )


async def repair_orphaned_submissions(
    db: AsyncSession,
    settle_seconds: float = 300.0,
    now_ms: int | None = None,
) -> int:
    """Approve pending submissions that already hold a badge record.

    This is the state left by an approval that stopped between issuance and
    the status update. Reservations younger than ``settle_seconds`` may still
    be minting and are left to their request; older ones are marked degraded.
    """
    cutoff_ms = mint_window_cutoff_ms(settle_seconds, now_ms)
    rows = (
        await db.execute(
            select(BadgeRecord)
            .join(Submission, Submission.id == BadgeRecord.submission_id)
            .where(Submission.status == SubmissionStatus.PENDING.value, _settled_before(cutoff_ms))
            .execution_options(populate_existing=True)
        )
    ).scalars().all()
    orphans = [(badge.submission_id, badge.mint_state, IssuanceResult.from_record(badge)) for badge in rows]
    repaired = 0
    now = datetime.now(timezone.utc)
    for submission_id, mint_state, badge in orphans:
        result = await db.execute(
            update(Submission)
            .where(Submission.id == submission_id, Submission.status == SubmissionStatus.PENDING.value)
            .values(**approval_values(badge, now))
        )
        if not result.rowcount:
            continue
        if mint_state == MintState.RESERVED.value:
            await db.execute(
                update(BadgeRecord)
                .where(BadgeRecord.id == badge.badge_id, BadgeRecord.mint_state == MintState.RESERVED.value)
                .values(mint_state=MintState.DEGRADED.value, updated_at=now)
            )
        repaired += 1
    await db.commit()
    if repaired:
        logger.info("Approved %d submissions left pending after issuance", repaired)
    return repaired


# ---------------------------------------------------------------------------
# Degraded badge upgrade
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _DegradedBadge:
    id: int
    submission_id: str
    challenge_id: str
    wallet_address: str
    proof_hash: str
    metadata_uri: str
    attributes: dict[str, Any]

    @classmethod
    def from_row(cls, row: BadgeRecord) -> _DegradedBadge:
        return cls(
            id=row.id,
            submission_id=row.submission_id,
            challenge_id=row.challenge_id,
            wallet_address=row.wallet_address,
            proof_hash=row.proof_hash,
            metadata_uri=row.metadata_uri,
            attributes=dict(row.attributes or {}),
        )


async def _find_existing_token(gateway: ChainGateway, badge: _DegradedBadge, timeout: float) -> int | None:
    """Token already minted for this badge, matched by proof hash."""
    cid = challenge_id_hash(badge.challenge_id)
    if not await call_in_thread(gateway.has_challenge_badge, badge.wallet_address, cid, timeout=timeout):
        return None
    for token_id in await call_in_thread(gateway.get_badges_of, badge.wallet_address, timeout=timeout):
        info = await call_in_thread(gateway.get_badge_info, token_id, timeout=timeout)
        if info.challenge_id == cid and info.proof_hash.lower() == badge.proof_hash.lower():
            return token_id
    return None


async def _mark_minted(
    db: AsyncSession,
    badge: _DegradedBadge,
    config: ChainConfig,
    token_id: str,
    tx_hash: str | None,
) -> None:
    """Flip the badge and its submission to minted. An adopted token keeps its placeholder tx."""
    now = datetime.now(timezone.utc)
    values: dict[str, Any] = {
        "token_id": token_id,
        "minted_on_chain": True,
        "mint_state": MintState.MINTED.value,
        "mint_address": config.badge_contract_address,
        "attributes": {**badge.attributes, "tokenId": token_id},
        "updated_at": now,
    }
    if tx_hash is not None:
        values["tx_signature"] = tx_hash
    await db.execute(
        update(BadgeRecord)
        .where(BadgeRecord.id == badge.id, BadgeRecord.mint_state != MintState.MINTED.value)
        .values(**values)
    )

    submission_values: dict[str, Any] = {
        "nft_mint_address": config.badge_contract_address,
        "minted_at": now,
        "updated_at": now,
    }
    if tx_hash is not None:
        submission_values["nft_tx_signature"] = tx_hash
    await db.execute(
        update(Submission)
        .where(
            Submission.id == badge.submission_id,
            Submission.status == SubmissionStatus.APPROVED.value,
        )
        .values(**submission_values)
    )
    await db.commit()


async def upgrade_degraded_badges(
    db: AsyncSession,
    gateway: ChainGateway,
    timeout: float = 60.0,
    limit: int = 50,
    queue: SignerDispatcher | None = None,
    settle_seconds: float | None = None,
    now_ms: int | None = None,
) -> UpgradeSummary:
    """Mint degraded badges on-chain, oldest first.

    Only badges of approved submissions issued more than ``settle_seconds``
    ago are considered (default: the mint window for ``timeout``). A younger
    badge may belong to a mint that timed out for its caller but is still
    running, and minting it again would issue a second token.

    A badge that already exists on-chain (a mint whose record update was lost)
    is adopted instead of minted again; the proof hash identifies it. Minting
    reuses the stored proof hash and metadata URI, so the on-chain badge
    commits to the original approval time. Stops early when the chain is
    unreachable.
    """
    summary = UpgradeSummary()
    if not gateway.config.minting_configured:
        logger.info("NFT minting not configured - skipping degraded badge upgrade")
        return summary

    queue = queue or dispatcher
    config = gateway.config
    if settle_seconds is None:
        settle_seconds = mint_window_seconds(config, timeout)
    cutoff_ms = mint_window_cutoff_ms(settle_seconds, now_ms)
    rows = (
        await db.scalars(
            select(BadgeRecord)
            .join(Submission, Submission.id == BadgeRecord.submission_id)
            .where(
                BadgeRecord.mint_state != MintState.MINTED.value,
                BadgeRecord.issued_at_ms <= cutoff_ms,
                Submission.status == SubmissionStatus.APPROVED.value,
            )
            .order_by(BadgeRecord.issued_at_ms)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
    ).all()
    badges = [_DegradedBadge.from_row(row) for row in rows]

    for badge in badges:
        if not is_valid_address(badge.wallet_address):
            summary.skipped += 1
            continue
        try:
            token_id = await _find_existing_token(gateway, badge, timeout)
            if token_id is not None:
                await _mark_minted(db, badge, config, str(token_id), None)
                summary.adopted += 1
                logger.info("Adopted on-chain token %s for badge %s", token_id, badge.id)
                continue
            receipt = await queue.submit(
                gateway.signer_address,
                gateway.mint_badge,
                badge.wallet_address,
                challenge_id_hash(badge.challenge_id),
                bytes(HexBytes(badge.proof_hash)),
                badge.metadata_uri,
                timeout=timeout,
            )
        except ChainUnavailable as exc:
            summary.failed += 1
            logger.warning("Chain unavailable, stopping degraded badge upgrade: %s", exc.message)
            break
        except ChainError as exc:
            summary.failed += 1
            logger.warning("Upgrade failed for badge %s: %s", badge.id, exc.message)
            continue

        try:
            await _mark_minted(db, badge, config, receipt.token_id, receipt.tx_hash)
        except SQLAlchemyError as exc:
            await db.rollback()
            summary.failed += 1
            audit_log.error(
                "badge_persist_failed_after_mint",
                badge_id=badge.id,
                submission_id=badge.submission_id,
                wallet=badge.wallet_address,
                tx_hash=receipt.tx_hash,
                token_id=receipt.token_id,
                error=str(exc),
            )
            continue
        summary.minted += 1
        logger.info("Minted degraded badge %s as token %s", badge.id, receipt.token_id)

    return summary
