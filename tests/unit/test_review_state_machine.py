"""Unit tests for the submission review state machine and error taxonomy."""

from __future__ import annotations

import pytest

from provelt.errors import (
    AlreadyProcessed,
    ChainError,
    ChainUnavailable,
    InvalidInput,
    NotFound,
    ProveltError,
    WalletNotFound,
)
from provelt.records import SubmissionStatus
from provelt.review.reviewer import VALID_TRANSITIONS, Action, validate_transition


class TestSubmissionStateMachine:
    def test_every_status_has_transitions(self):
        assert set(VALID_TRANSITIONS) == set(SubmissionStatus)

    def test_pending_to_approved(self):
        validate_transition(SubmissionStatus.PENDING, SubmissionStatus.APPROVED)

    def test_pending_to_rejected(self):
        validate_transition(SubmissionStatus.PENDING, SubmissionStatus.REJECTED)

    @pytest.mark.parametrize("terminal", [SubmissionStatus.APPROVED, SubmissionStatus.REJECTED])
    def test_terminal_states(self, terminal):
        assert VALID_TRANSITIONS[terminal] == []
        for target in SubmissionStatus:
            with pytest.raises(AlreadyProcessed):
                validate_transition(terminal, target)

    def test_self_transition_rejected(self):
        with pytest.raises(AlreadyProcessed):
            validate_transition(SubmissionStatus.PENDING, SubmissionStatus.PENDING)

    def test_actions(self):
        assert Action("approve") is Action.APPROVE
        assert Action("reject") is Action.REJECT


class TestErrorTaxonomy:
    def test_status_codes(self):
        assert NotFound().status_code == 404
        assert AlreadyProcessed().status_code == 409
        assert InvalidInput().status_code == 400
        assert ChainUnavailable().status_code == 503

    def test_wallet_not_found_is_user_actionable(self):
        exc = WalletNotFound("user-1")
        assert "Complete wallet login first" in exc.message
        assert exc.context == {"user_id": "user-1"}
        assert exc.status_code == 400

    def test_chain_unavailable_is_chain_error(self):
        assert issubclass(ChainUnavailable, ChainError)
        assert issubclass(ChainError, ProveltError)

    def test_default_message(self):
        assert NotFound().message == "NotFound"
