"""Contract ABIs (subset of functions the backend calls)."""

from __future__ import annotations

from typing import Any


def _fn(name: str, inputs: list[tuple[str, str]], outputs: list[tuple[str, str]], mutability: str) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
        "stateMutability": mutability,
    }


BADGE_ABI: list[dict[str, Any]] = [
    _fn("balanceOf", [("owner", "address")], [("", "uint256")], "view"),
    _fn("ownerOf", [("tokenId", "uint256")], [("", "address")], "view"),
    _fn("tokenURI", [("tokenId", "uint256")], [("", "string")], "view"),
    _fn("totalMinted", [], [("", "uint256")], "view"),
    _fn("getBadgesOf", [("owner", "address")], [("", "uint256[]")], "view"),
    _fn("hasChallengeBadge", [("user", "address"), ("challengeId", "uint256")], [("", "bool")], "view"),
    _fn(
        "getBadgeInfo",
        [("tokenId", "uint256")],
        [("challengeId", "uint256"), ("completedAt", "uint256"), ("proofHash", "bytes32")],
        "view",
    ),
    _fn("getApproved", [("tokenId", "uint256")], [("", "address")], "view"),
    _fn(
        "mintBadge",
        [("to", "address"), ("challengeId", "uint256"), ("proofHash", "bytes32"), ("uri", "string")],
        [("", "uint256")],
        "nonpayable",
    ),
    _fn("approve", [("to", "address"), ("tokenId", "uint256")], [], "nonpayable"),
    {
        "type": "event",
        "name": "BadgeMinted",
        "anonymous": False,
        "inputs": [
            {"name": "recipient", "type": "address", "indexed": True},
            {"name": "tokenId", "type": "uint256", "indexed": True},
            {"name": "challengeId", "type": "uint256", "indexed": True},
            {"name": "proofHash", "type": "bytes32", "indexed": False},
            {"name": "uri", "type": "string", "indexed": False},
        ],
    },
]

STAKING_ABI: list[dict[str, Any]] = [
    _fn("stake", [("tokenId", "uint256"), ("difficulty", "uint8")], [], "nonpayable"),
    _fn("unstake", [("tokenId", "uint256")], [], "nonpayable"),
    _fn("claimRewards", [("tokenId", "uint256")], [], "nonpayable"),
    _fn("claimAllRewards", [], [], "nonpayable"),
    _fn("pendingRewards", [("tokenId", "uint256")], [("", "uint256")], "view"),
    _fn("totalPendingRewards", [("owner", "address")], [("", "uint256")], "view"),
    _fn("getStakedTokens", [("owner", "address")], [("", "uint256[]")], "view"),
    _fn(
        "stakes",
        [("tokenId", "uint256")],
        [
            ("owner", "address"),
            ("stakedAt", "uint256"),
            ("lastClaimAt", "uint256"),
            ("difficulty", "uint8"),
        ],
        "view",
    ),
]

REWARD_TOKEN_ABI: list[dict[str, Any]] = [
    _fn("balanceOf", [("account", "address")], [("", "uint256")], "view"),
    _fn("decimals", [], [("", "uint8")], "view"),
]
