"""ORM models for profiles, challenges, submissions and badge records."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from provelt.db.base import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class Profile(Base):
    """User profile with denormalized reputation counters.

    total_points and badges_count are derived from submissions and badge
    records; reconciliation recomputes them from source rows.
    """

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    wallet_address: Mapped[str | None] = mapped_column(String(42), nullable=True, index=True)
    total_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    badges_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


class Challenge(Base):
    __tablename__ = "challenges"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    badge_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    badge_image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    completions_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------


class Submission(Base):
    """Proof submission. Status moves pending -> approved | rejected exactly once.

    user_id is a string because historical rows hold either a profile id or a
    (possibly truncated) wallet address; the identity resolver untangles it.
    """

    __tablename__ = "submissions"
    __table_args__ = (
        Index("idx_submissions_user_status", "user_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    challenge_id: Mapped[str] = mapped_column(String(64), ForeignKey("challenges.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    proof_media_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    caption: Mapped[str | None] = mapped_column(Text, nullable=True)
    nft_mint_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    nft_metadata_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    nft_tx_signature: Mapped[str | None] = mapped_column(String(128), nullable=True)
    minted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    challenge: Mapped[Challenge] = relationship("Challenge", lazy="joined")


# ---------------------------------------------------------------------------
# Badge records
# ---------------------------------------------------------------------------


class BadgeRecord(Base):
    """Issued badge. UNIQUE(submission_id) is the exactly-once backstop.

    mint_state moves reserved -> minted | degraded. Reserved and degraded rows
    carry placeholder tx/token values and enough inputs (wallet, proof hash,
    timestamp) to be minted later.
    """

    __tablename__ = "badge_records"
    __table_args__ = (
        UniqueConstraint("submission_id", name="badge_records_submission_id_key"),
        Index("idx_badge_records_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    submission_id: Mapped[str] = mapped_column(String(64), ForeignKey("submissions.id"), nullable=False)
    challenge_id: Mapped[str] = mapped_column(String(64), ForeignKey("challenges.id"), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False)
    mint_address: Mapped[str] = mapped_column(String(128), nullable=False)
    metadata_uri: Mapped[str] = mapped_column(Text, nullable=False)
    tx_signature: Mapped[str] = mapped_column(String(128), nullable=False)
    token_id: Mapped[str] = mapped_column(String(80), nullable=False)
    proof_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    issued_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    minted_on_chain: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    mint_state: Mapped[str] = mapped_column(
        String(16), nullable=False, default="reserved", server_default="reserved"
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    attributes: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
