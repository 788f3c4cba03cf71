"""Proof hash: the commitment binding challenge, user, submission and time.

The digest is keccak256 over the Solidity packed encoding of
``(string challengeId, string userId, string submissionId, uint256 timestamp)``
so the contract and the server agree on the same value. The timestamp must be
captured once by the caller and reused for the mint call.
"""

from __future__ import annotations

import time

from hexbytes import HexBytes
from web3 import Web3

PROOF_HASH_TYPES = ["string", "string", "string", "uint256"]


def now_millis() -> int:
    """Capture the issuance timestamp (unix milliseconds)."""
    return int(time.time() * 1000)


def compute_proof_hash(challenge_id: str, user_id: str, submission_id: str, unix_millis: int) -> HexBytes:
    """Return the 32-byte proof digest for one issuance."""
    if unix_millis < 0:
        raise ValueError("timestamp must be non-negative")
    return Web3.solidity_keccak(
        PROOF_HASH_TYPES,
        [challenge_id, user_id, submission_id, unix_millis],
    )


def challenge_id_hash(challenge_id: str) -> int:
    """Map a challenge UUID string onto the contract's uint256 challenge id."""
    return int.from_bytes(Web3.keccak(text=challenge_id), "big")
