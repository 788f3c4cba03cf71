"""Submission review state machine.

State progression: pending -> approved | pending -> rejected.
Both targets are terminal; a decision applies at most once per submission.
Every transition is a conditional UPDATE on the pending row. An approval
claims the submission when it reserves the badge, and a claimed submission
can only end approved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from provelt.db.models import BadgeRecord, Submission
from provelt.errors import AlreadyProcessed, InvalidInput, NotFound
from provelt.identity.resolver import IdentityResolver
from provelt.records import ChallengeRecord, SubmissionRecord, SubmissionStatus
from provelt.review.issuance import IssuanceCoordinator, IssuanceResult

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[SubmissionStatus, list[SubmissionStatus]] = {
    SubmissionStatus.PENDING: [SubmissionStatus.APPROVED, SubmissionStatus.REJECTED],
    SubmissionStatus.APPROVED: [],
    SubmissionStatus.REJECTED: [],
}

DEFAULT_REJECTION_REASON = "Does not meet challenge requirements"


class Action(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


def validate_transition(current: SubmissionStatus, target: SubmissionStatus) -> None:
    """Raise AlreadyProcessed unless ``current -> target`` is allowed."""
    if target not in VALID_TRANSITIONS.get(current, []):
        raise AlreadyProcessed(
            f"Submission already processed ({current.value})",
            current=current.value,
            target=target.value,
        )


@dataclass(frozen=True)
class Decision:
    submission_id: str
    status: SubmissionStatus
    issuance: IssuanceResult | None = None
    rejection_reason: str | None = None
    points_awarded: int = 0

    @property
    def message(self) -> str:
        if self.status is SubmissionStatus.REJECTED:
            return "Submission rejected"
        if self.issuance is not None and self.issuance.degraded:
            return "Submission approved; on-chain mint pending"
        return "Submission approved and badge minted"


class SubmissionReviewer:
    def __init__(
        self,
        coordinator: IssuanceCoordinator,
        resolver: IdentityResolver | None = None,
        default_rejection_reason: str = DEFAULT_REJECTION_REASON,
    ) -> None:
        self.coordinator = coordinator
        self.resolver = resolver or IdentityResolver()
        self.default_rejection_reason = default_rejection_reason

    async def decide(
        self,
        db: AsyncSession,
        submission_id: str,
        action: Action | str,
        rejection_reason: str | None = None,
    ) -> Decision:
        if not submission_id or not action:
            raise InvalidInput("Missing required fields")
        try:
            action = Action(action)
        except ValueError:
            raise InvalidInput(f"Invalid action: {action!r}") from None

        row = await db.get(Submission, submission_id, populate_existing=True)
        if row is None:
            raise NotFound("Submission not found", submission_id=submission_id)
        submission = SubmissionRecord.from_row(row)

        if action is Action.REJECT:
            validate_transition(submission.status, SubmissionStatus.REJECTED)
            return await self._reject(db, submission, rejection_reason)

        validate_transition(submission.status, SubmissionStatus.APPROVED)
        challenge = ChallengeRecord.from_row(row.challenge)
        return await self._approve(db, submission, challenge)

    async def _reject(self, db: AsyncSession, submission: SubmissionRecord, reason: str | None) -> Decision:
        """Reject a pending submission that no approval has claimed yet."""
        reason = reason or self.default_rejection_reason
        reserved = select(BadgeRecord.id).where(BadgeRecord.submission_id == Submission.id)
        result = await db.execute(
            update(Submission)
            .where(
                Submission.id == submission.id,
                Submission.status == SubmissionStatus.PENDING.value,
                Submission.nft_tx_signature.is_(None),
                ~reserved.exists(),
            )
            .values(
                status=SubmissionStatus.REJECTED.value,
                rejection_reason=reason,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            raise AlreadyProcessed("Submission already processed", submission_id=submission.id)
        await db.commit()
        logger.info("Submission %s rejected: %s", submission.id, reason)
        return Decision(submission_id=submission.id, status=SubmissionStatus.REJECTED, rejection_reason=reason)

    async def _approve(self, db: AsyncSession, submission: SubmissionRecord, challenge: ChallengeRecord) -> Decision:
        wallet = await self.resolver.resolve_or_raise(db, submission.user_id)
        issuance = await self.coordinator.issue(db, submission, challenge, wallet)
        logger.info(
            "Submission %s approved (token=%s, degraded=%s, resumed=%s)",
            submission.id,
            issuance.token_id,
            issuance.degraded,
            issuance.already_minted,
        )
        return Decision(
            submission_id=submission.id,
            status=SubmissionStatus.APPROVED,
            issuance=issuance,
            points_awarded=challenge.points,
        )
