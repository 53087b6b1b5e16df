"""End-to-end escrow flow over HTTP: contract, milestones, multisig payment, dispute."""

import pytest
from httpx import AsyncClient

from escrow_api.utils.crypto import sign_approval
from tests.conftest import register_via_api, signed


async def _create_contract(client: AsyncClient, client_id: str, client_key: str, auditor_id: str) -> dict:
    body = {
        "title": "Lending protocol audit",
        "auditor_id": auditor_id,
        "total_amount": "1000",
        "currency": "usdc",
        "requires_multisig": True,
        "milestones": [
            {"title": "Initial report", "amount": "400"},
            {"title": "Fix review", "amount": "600"},
        ],
    }
    resp = await signed(client, "POST", "/contracts", client_id, client_key, body)
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_happy_path(client: AsyncClient) -> None:
    client_id, client_key = await register_via_api(client, role="project_owner")
    auditor_id, auditor_key = await register_via_api(client, role="auditor")

    contract = await _create_contract(client, client_id, client_key, auditor_id)
    contract_id = contract["contract_id"]
    assert contract["status"] == "pending"
    assert contract["currency"] == "USDC"
    assert [m["title"] for m in contract["milestones"]] == ["Initial report", "Fix review"]

    resp = await signed(client, "POST", f"/contracts/{contract_id}/activate", auditor_id, auditor_key)
    assert resp.status_code == 200
    assert resp.json()["status"] == "active"

    milestone_id = contract["milestones"][0]["milestone_id"]
    resp = await signed(
        client, "POST", f"/milestones/{milestone_id}/completion", auditor_id, auditor_key, {"completed": True}
    )
    assert resp.status_code == 200
    assert resp.json()["is_completed"] is True

    resp = await signed(
        client, "POST", f"/contracts/{contract_id}/transactions", client_id, client_key,
        {"amount": "400", "type": "milestone_payment", "milestone_id": milestone_id, "idempotency_key": "m1"},
    )
    assert resp.status_code == 201, resp.text
    tx = resp.json()
    assert tx["status"] == "pending"
    assert tx["recipient_id"] == auditor_id

    for signer_id, key in ((client_id, client_key), (auditor_id, auditor_key)):
        signature = sign_approval(key, tx["transaction_id"], contract_id, tx["amount"], tx["type"])
        resp = await signed(
            client, "POST", f"/transactions/{tx['transaction_id']}/approve", signer_id, key,
            {"signature": signature},
        )
        assert resp.status_code == 200, resp.text
    quorum = resp.json()
    assert quorum["approved"] is True
    assert quorum["approvals_count"] == 2
    assert quorum["transaction"]["status"] == "approved"

    resp = await signed(
        client, "POST", f"/transactions/{tx['transaction_id']}/approve", auditor_id, auditor_key,
        {"signature": signature},
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "duplicate_approval"

    resp = await signed(
        client, "POST", f"/transactions/{tx['transaction_id']}/settle", client_id, client_key,
        {"settlement_hash": "0xfeed"},
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "executed"

    resp = await signed(client, "GET", f"/contracts/{contract_id}/events", auditor_id, auditor_key)
    assert resp.status_code == 200
    history = resp.json()
    assert history[0]["event_type"] == "contract.created"
    assert history[-1]["event_type"] == "transaction.executed"
    assert history[-1]["message"] == "Transaction settled (0xfeed)"
    assert history[-1]["recipient_ids"] == [auditor_id]


@pytest.mark.asyncio
async def test_dispute_flow(client: AsyncClient) -> None:
    client_id, client_key = await register_via_api(client, role="project_owner")
    auditor_id, auditor_key = await register_via_api(client, role="auditor")
    arbitrator_id, arbitrator_key = await register_via_api(client, role="admin", is_arbitrator=True)
    outsider_id, outsider_key = await register_via_api(client)

    contract = await _create_contract(client, client_id, client_key, auditor_id)
    contract_id = contract["contract_id"]

    resp = await signed(client, "GET", f"/contracts/{contract_id}", outsider_id, outsider_key)
    assert resp.status_code == 403

    resp = await signed(
        client, "POST", f"/contracts/{contract_id}/disputes", client_id, client_key,
        {"reason": "Auditor unresponsive"},
    )
    assert resp.status_code == 201, resp.text
    dispute_id = resp.json()["dispute_id"]

    resp = await signed(client, "GET", f"/contracts/{contract_id}", client_id, client_key)
    assert resp.json()["status"] == "disputed"

    resp = await signed(client, "POST", f"/disputes/{dispute_id}/review", arbitrator_id, arbitrator_key)
    assert resp.status_code == 200
    assert resp.json()["status"] == "in_review"

    resp = await signed(
        client, "POST", f"/disputes/{dispute_id}/comments", auditor_id, auditor_key,
        {"comment": "I was on leave, report attached"},
    )
    assert resp.status_code == 201

    resp = await signed(
        client, "POST", f"/disputes/{dispute_id}/resolve", arbitrator_id, arbitrator_key,
        {"resolution": "refund issued"},
    )
    assert resp.status_code == 200
    assert resp.json()["resolution"] == "refund issued"

    resp = await signed(
        client, "POST", f"/disputes/{dispute_id}/resolve", arbitrator_id, arbitrator_key,
        {"resolution": "release to auditor"},
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "already_resolved"

    resp = await signed(
        client, "POST", f"/disputes/{dispute_id}/comments", client_id, client_key, {"comment": "thanks"}
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "invalid_state"

    resp = await signed(client, "GET", f"/disputes/{dispute_id}/comments", client_id, client_key)
    assert [c["comment"] for c in resp.json()] == ["I was on leave, report attached"]

    resp = await signed(client, "POST", f"/contracts/{contract_id}/cancel", arbitrator_id, arbitrator_key)
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"

    resp = await signed(client, "POST", f"/contracts/{contract_id}/cancel", client_id, client_key)
    assert resp.status_code == 409
    assert resp.json()["error"] == "invalid_transition"


@pytest.mark.asyncio
async def test_invalid_amount_rejected(client: AsyncClient) -> None:
    client_id, client_key = await register_via_api(client)
    auditor_id, _ = await register_via_api(client)
    contract = await _create_contract(client, client_id, client_key, auditor_id)
    resp = await signed(
        client, "POST", f"/contracts/{contract['contract_id']}/transactions", client_id, client_key,
        {"amount": "0", "type": "deposit"},
    )
    assert resp.status_code == 422
