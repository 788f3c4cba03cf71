"""Badge metadata and its self-contained data URI."""

from __future__ import annotations

import base64
import json
from datetime import datetime
from typing import Any

from provelt.records import ChallengeRecord

PLATFORM = "PROVELT"
NETWORK = "Mantle"


def build_badge_metadata(challenge: ChallengeRecord, completed_at: datetime, default_image: str) -> dict[str, Any]:
    """ERC-721 style metadata for a challenge badge."""
    return {
        "name": f"{PLATFORM}: {challenge.title}",
        "description": f'Badge earned for completing "{challenge.title}" on {PLATFORM}.',
        "image": challenge.badge_image_url or default_image,
        "attributes": [
            {"trait_type": "Challenge", "value": challenge.title},
            {"trait_type": "Category", "value": challenge.category},
            {"trait_type": "Difficulty", "value": challenge.difficulty.value},
            {"trait_type": "Completed", "value": completed_at.isoformat()},
            {"trait_type": "Platform", "value": PLATFORM},
            {"trait_type": "Network", "value": NETWORK},
            {"trait_type": "Points", "value": challenge.points},
        ],
    }


def to_data_uri(metadata: dict[str, Any]) -> str:
    payload = json.dumps(metadata, separators=(",", ":")).encode()
    return "data:application/json;base64," + base64.b64encode(payload).decode()


def from_data_uri(uri: str) -> dict[str, Any]:
    prefix = "data:application/json;base64,"
    if not uri.startswith(prefix):
        raise ValueError("Not a base64 JSON data URI")
    return json.loads(base64.b64decode(uri[len(prefix):]))
