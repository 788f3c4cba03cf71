"""Pydantic request/response models for review endpoints."""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, Field


class DecideRequest(BaseModel):
    submission_id: str = Field(validation_alias=AliasChoices("submission_id", "submissionId"))
    action: str
    rejection_reason: str | None = Field(
        default=None, validation_alias=AliasChoices("rejection_reason", "rejectionReason")
    )


class IssuanceResponse(BaseModel):
    tx_hash: str
    token_id: str
    degraded: bool
    minted_on_chain: bool
    contract_address: str | None = None
    explorer_url: str | None = None
    metadata_uri: str
    degraded_reason: str | None = None


class DecisionResponse(BaseModel):
    success: bool = True
    submission_id: str
    status: str
    message: str
    issuance: IssuanceResponse | None = None
    rejection_reason: str | None = None
    points_awarded: int = 0


class ProfileReconcileResponse(BaseModel):
    profile_id: str
    total_points: int
    badges_count: int
    changed: bool
