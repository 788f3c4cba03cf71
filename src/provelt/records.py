"""Typed, validated views over store rows used by the issuance pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from provelt.errors import InvalidInput


class Difficulty(str, Enum):
    """Challenge difficulty, which doubles as the staking reward tier.

    The on-chain staking contract takes the tier as a ``uint8`` in this order.
    """

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXPERT = "expert"

    @property
    def index(self) -> int:
        return list(Difficulty).index(self)

    @classmethod
    def from_index(cls, index: int) -> Difficulty:
        members = list(cls)
        if not 0 <= index < len(members):
            raise InvalidInput(f"Unknown difficulty tier index: {index}")
        return members[index]

    @classmethod
    def parse(cls, value: Any) -> Difficulty:
        if isinstance(value, Difficulty):
            return value
        if isinstance(value, int):
            return cls.from_index(value)
        try:
            return cls(str(value).lower())
        except ValueError:
            raise InvalidInput(f"Unknown difficulty: {value!r}") from None


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class MintState(str, Enum):
    """On-chain state of a badge record.

    ``reserved`` rows belong to an issuance that has not resolved its mint
    yet; the request that inserted the row may still be waiting on the chain.
    """

    RESERVED = "reserved"
    DEGRADED = "degraded"
    MINTED = "minted"


def _require(row: Any, field: str, kind: str) -> Any:
    value = getattr(row, field, None)
    if value is None or value == "":
        raise InvalidInput(f"{kind} is missing required field '{field}'")
    return value


@dataclass(frozen=True)
class ChallengeRecord:
    id: str
    title: str
    category: str
    difficulty: Difficulty
    points: int
    badge_image_url: str | None = None
    badge_name: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> ChallengeRecord:
        """Validate a challenge row before it enters the issuance pipeline."""
        points = _require(row, "points", "Challenge")
        if not isinstance(points, int) or points < 0:
            raise InvalidInput(f"Challenge points must be a non-negative integer, got {points!r}")
        return cls(
            id=str(_require(row, "id", "Challenge")),
            title=_require(row, "title", "Challenge"),
            category=_require(row, "category", "Challenge"),
            difficulty=Difficulty.parse(_require(row, "difficulty", "Challenge")),
            points=points,
            badge_image_url=getattr(row, "badge_image_url", None),
            badge_name=getattr(row, "badge_name", None),
        )


@dataclass(frozen=True)
class SubmissionRecord:
    id: str
    user_id: str
    challenge_id: str
    status: SubmissionStatus

    @classmethod
    def from_row(cls, row: Any) -> SubmissionRecord:
        return cls(
            id=str(_require(row, "id", "Submission")),
            user_id=str(_require(row, "user_id", "Submission")),
            challenge_id=str(_require(row, "challenge_id", "Submission")),
            status=SubmissionStatus(_require(row, "status", "Submission")),
        )


@dataclass(frozen=True)
class ProfileRecord:
    id: str
    wallet_address: str | None
    total_points: int = 0
    badges_count: int = 0

    @classmethod
    def from_row(cls, row: Any) -> ProfileRecord:
        total_points = getattr(row, "total_points", 0) or 0
        badges_count = getattr(row, "badges_count", 0) or 0
        if total_points < 0 or badges_count < 0:
            raise InvalidInput("Profile counters must be non-negative")
        return cls(
            id=str(_require(row, "id", "Profile")),
            wallet_address=getattr(row, "wallet_address", None) or None,
            total_points=total_points,
            badges_count=badges_count,
        )

    @property
    def identities(self) -> list[str]:
        """Every value a historical ``user_id`` column may hold for this profile."""
        ids = [self.id]
        if self.wallet_address:
            ids.append(self.wallet_address.lower())
        return ids
