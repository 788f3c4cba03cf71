"""Review API endpoints: submission decisions and profile reconciliation."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from provelt.database import get_session
from provelt.dependencies import get_reviewer
from provelt.review.reconciliation import recompute_profile
from provelt.review.reviewer import Decision, SubmissionReviewer
from provelt.review.schemas import (
    DecideRequest,
    DecisionResponse,
    IssuanceResponse,
    ProfileReconcileResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Review"])


def _to_response(decision: Decision, reviewer: SubmissionReviewer) -> DecisionResponse:
    issuance = None
    if decision.issuance is not None:
        result = decision.issuance
        config = reviewer.coordinator.config
        issuance = IssuanceResponse(
            tx_hash=result.tx_hash,
            token_id=result.token_id,
            degraded=result.degraded,
            minted_on_chain=result.minted_on_chain,
            contract_address=config.badge_contract_address or None,
            explorer_url=config.explorer_url_for(result.tx_hash) if result.minted_on_chain else None,
            metadata_uri=result.metadata_uri,
            degraded_reason=result.degraded_reason,
        )
    return DecisionResponse(
        submission_id=decision.submission_id,
        status=decision.status.value,
        message=decision.message,
        issuance=issuance,
        rejection_reason=decision.rejection_reason,
        points_awarded=decision.points_awarded,
    )


@router.post("/submissions/decide", response_model=DecisionResponse)
async def decide_submission(
    body: DecideRequest,
    db: AsyncSession = Depends(get_session),  # noqa: B008
    reviewer: SubmissionReviewer = Depends(get_reviewer),  # noqa: B008
) -> DecisionResponse:
    """Approve (and issue the badge) or reject a pending submission."""
    decision = await reviewer.decide(db, body.submission_id, body.action, body.rejection_reason)
    return _to_response(decision, reviewer)


@router.post("/admin/reconcile/profiles/{profile_id}", response_model=ProfileReconcileResponse)
async def reconcile_profile(
    profile_id: str,
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> ProfileReconcileResponse:
    """Recompute a profile's points and badge count from source rows."""
    result = await recompute_profile(db, profile_id)
    return ProfileReconcileResponse(
        profile_id=result.profile_id,
        total_points=result.total_points,
        badges_count=result.badges_count,
        changed=result.changed,
    )
