"""Integration tests for the review, reconciliation and staking HTTP endpoints."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from conftest import BADGE_CONTRACT, USER_WALLET, FakeChainGateway, FakeClock, Seeded
from provelt.errors import ChainUnavailable
from provelt.records import Difficulty

pytestmark = pytest.mark.asyncio

DECIDE = "/api/v1/submissions/decide"


class TestDecideAPI:
    async def test_approve(self, client: AsyncClient, seeded: Seeded):
        resp = await client.post(DECIDE, json={"submission_id": seeded.submission_id, "action": "approve"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["status"] == "approved"
        assert data["points_awarded"] == 50
        issuance = data["issuance"]
        assert issuance["minted_on_chain"] is True
        assert issuance["degraded"] is False
        assert issuance["contract_address"] == BADGE_CONTRACT
        assert issuance["explorer_url"] == f"https://sepolia.mantlescan.xyz/tx/{issuance['tx_hash']}"
        assert issuance["metadata_uri"].startswith("data:application/json;base64,")

    async def test_approve_degraded(self, client: AsyncClient, seeded: Seeded, fake_gateway: FakeChainGateway):
        fake_gateway.fail_with = ChainUnavailable("rpc down")
        resp = await client.post(DECIDE, json={"submission_id": seeded.submission_id, "action": "approve"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["message"] == "Submission approved; on-chain mint pending"
        assert data["issuance"]["degraded"] is True
        assert data["issuance"]["explorer_url"] is None
        assert data["issuance"]["tx_hash"].startswith("sim_")

    async def test_reject_camel_case_body(self, client: AsyncClient, seeded: Seeded):
        resp = await client.post(
            DECIDE,
            json={"submissionId": seeded.submission_id, "action": "reject", "rejectionReason": "blurry image"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "rejected"
        assert data["rejection_reason"] == "blurry image"
        assert data["issuance"] is None

    async def test_unknown_submission(self, client: AsyncClient, seeded: Seeded):
        resp = await client.post(DECIDE, json={"submission_id": "nope", "action": "approve"})
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"

    async def test_already_processed(self, client: AsyncClient, seeded: Seeded):
        body = {"submission_id": seeded.submission_id, "action": "approve"}
        assert (await client.post(DECIDE, json=body)).status_code == 200
        resp = await client.post(DECIDE, json=body)
        assert resp.status_code == 409
        assert resp.json()["code"] == "already_processed"

    async def test_invalid_action(self, client: AsyncClient, seeded: Seeded):
        resp = await client.post(DECIDE, json={"submission_id": seeded.submission_id, "action": "maybe"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_input"

    async def test_missing_field(self, client: AsyncClient, seeded: Seeded):
        resp = await client.post(DECIDE, json={"action": "approve"})
        assert resp.status_code == 422
        assert resp.json()["code"] == "invalid_input"

    async def test_wallet_not_found(self, client: AsyncClient, seeded: Seeded, make_submission):
        await make_submission("submission-2", "ghost-user")
        resp = await client.post(DECIDE, json={"submission_id": "submission-2", "action": "approve"})
        assert resp.status_code == 400
        data = resp.json()
        assert data["code"] == "wallet_not_found"
        assert "Complete wallet login first" in data["detail"]


class TestReconcileAPI:
    async def test_reconcile_profile(self, client: AsyncClient, seeded: Seeded):
        await client.post(DECIDE, json={"submission_id": seeded.submission_id, "action": "approve"})
        resp = await client.post(f"/api/v1/admin/reconcile/profiles/{seeded.profile_id}")
        assert resp.status_code == 200
        assert resp.json() == {
            "profile_id": seeded.profile_id,
            "total_points": 50,
            "badges_count": 1,
            "changed": False,
        }

    async def test_reconcile_unknown_profile(self, client: AsyncClient, seeded: Seeded):
        resp = await client.post("/api/v1/admin/reconcile/profiles/nobody")
        assert resp.status_code == 404


class TestStakingAPI:
    async def test_rates(self, client: AsyncClient):
        resp = await client.get("/api/v1/staking/rates")
        assert resp.status_code == 200
        assert resp.json() == {
            "decimals": 18,
            "daily_yields": {"easy": 1, "medium": 3, "hard": 5, "expert": 10},
        }

    async def test_invalid_owner(self, client: AsyncClient):
        resp = await client.get("/api/v1/staking/0x1234")
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_input"

    async def test_position(self, client: AsyncClient, fake_gateway: FakeChainGateway, clock: FakeClock):
        fake_gateway.give(USER_WALLET, 1, 2)
        fake_gateway.stake(1, Difficulty.HARD)
        clock.advance(86_400)

        resp = await client.get(f"/api/v1/staking/{USER_WALLET}")

        assert resp.status_code == 200
        data = resp.json()
        assert data["available"] == [2]
        assert data["staking_available"] is True
        assert data["total_pending"] == str(5 * 10**18)
        [staked] = data["staked"]
        assert staked["token_id"] == 1
        assert staked["tier"] == "hard"
        assert staked["pending_rewards"] == str(5 * 10**18)
