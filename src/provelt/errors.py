"""Error taxonomy for the review, issuance and staking pipeline.

Every error carries an HTTP status and a stable machine-readable code so the
global exception handler can render it without knowing the concrete type.
"""

from __future__ import annotations

from typing import Any


class ProveltError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.context = context


class NotFound(ProveltError):
    status_code = 404
    code = "not_found"


class AlreadyProcessed(ProveltError):
    status_code = 409
    code = "already_processed"


class WalletNotFound(ProveltError):
    status_code = 400
    code = "wallet_not_found"

    def __init__(self, user_id: str) -> None:
        super().__init__(
            "User wallet address not found. Complete wallet login first.",
            user_id=user_id,
        )


class InvalidInput(ProveltError):
    status_code = 400
    code = "invalid_input"


class AlreadyMinted(ProveltError):
    """A badge already exists for the submission. Callers treat this as success."""

    status_code = 200
    code = "already_minted"

    def __init__(self, record: Any) -> None:
        super().__init__("Badge already issued for submission", record=record)
        self.record = record


class PersistenceFailure(ProveltError):
    status_code = 500
    code = "persistence_failure"


# --- Chain ---


class ChainError(ProveltError):
    status_code = 502
    code = "chain_error"


class ChainUnavailable(ChainError):
    """RPC unreachable, timed out, or not configured. Issuance degrades on this."""

    status_code = 503
    code = "chain_unavailable"


class TransactionReverted(ChainError):
    status_code = 400
    code = "transaction_reverted"


# --- Staking ---


class StakingError(ProveltError):
    status_code = 400
    code = "staking_error"


class AlreadyStaked(StakingError):
    code = "already_staked"


class NotStaked(StakingError):
    code = "not_staked"


class NotTokenOwner(StakingError):
    status_code = 403
    code = "not_token_owner"
