#!/usr/bin/env python3
"""
Live demo: a project owner and an auditor run an audit engagement through escrow.

Carol: protocol team (the client)
Dave:  security auditor
Erin:  platform arbitrator

Showcases:
  1. Profile registration with Ed25519 keys
  2. Contract creation with milestones
  3. Auditor activation and milestone completion
  4. Multisig milestone payment (both parties sign)
  5. Settlement recording
  6. Dispute, arbitration and reinstatement
  7. Contract history with rendered notifications

Run:
  1. Start the API:  uvicorn escrow_api.main:app --port 8080
  2. Run this demo:  python scripts/demo_escrow_flow.py [base_url]
"""

import hashlib
import json
import secrets
import sys
from datetime import UTC, datetime
from decimal import Decimal

import httpx
from nacl.encoding import HexEncoder
from nacl.signing import SigningKey

BASE_URL = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8080"

BOLD = "\033[1m"
DIM = "\033[2m"
GREEN = "\033[92m"
BLUE = "\033[94m"
YELLOW = "\033[93m"
RED = "\033[91m"
CYAN = "\033[96m"
MAGENTA = "\033[95m"
RESET = "\033[0m"


def banner(text: str) -> None:
    print(f"\n{'=' * 64}")
    print(f"  {BOLD}{text}{RESET}")
    print(f"{'=' * 64}")


def step(num: int, text: str) -> None:
    print(f"\n{BOLD}{CYAN}Step {num:2d}{RESET} | {text}")


def party_says(name: str, color: str, msg: str) -> None:
    print(f"         {color}{BOLD}{name}{RESET}: {msg}")


def show_json(data: dict, keys: list[str] | None = None, indent: int = 9) -> None:
    filtered = {k: data[k] for k in keys if k in data} if keys else data
    prefix = " " * indent
    for line in json.dumps(filtered, indent=2, default=str).split("\n"):
        print(f"{prefix}{DIM}{line}{RESET}")


def fail(msg: str) -> None:
    print(f"\n{RED}{BOLD}FAILED: {msg}{RESET}")
    sys.exit(1)


def expect(resp: httpx.Response, status: int, context: str) -> dict:
    if resp.status_code != status:
        fail(f"{context}: expected {status}, got {resp.status_code}: {resp.text}")
    return resp.json()


class ProfileClient:
    """A registered profile that signs every request it sends."""

    def __init__(self, name: str, color: str) -> None:
        self.name = name
        self.color = color
        self.signing_key = SigningKey.generate()
        self.public_hex = self.signing_key.verify_key.encode(encoder=HexEncoder).decode()
        self.profile_id: str | None = None
        self.http = httpx.Client(base_url=BASE_URL, timeout=30.0)

    def _sign(self, method: str, path: str, body: bytes) -> dict[str, str]:
        timestamp = datetime.now(UTC).isoformat()
        body_hash = hashlib.sha256(body).hexdigest()
        message = f"{timestamp}\n{method}\n{path}\n{body_hash}".encode()
        signature = self.signing_key.sign(message, encoder=HexEncoder).signature.decode()
        return {
            "Authorization": f"ProfileSig {self.profile_id}:{signature}",
            "X-Timestamp": timestamp,
            "X-Nonce": secrets.token_hex(16),
        }

    def register(self, role: str, is_arbitrator: bool = False) -> dict:
        data = expect(self.http.post("/profiles", json={
            "public_key": self.public_hex,
            "display_name": self.name,
            "role": role,
            "is_arbitrator": is_arbitrator,
        }), 201, f"Register {self.name}")
        self.profile_id = data["profile_id"]
        return data

    def post(self, path: str, data: dict | None = None) -> httpx.Response:
        body = json.dumps(data).encode() if data is not None else b""
        headers = {"Content-Type": "application/json"}
        headers.update(self._sign("POST", path, body))
        return self.http.post(path, content=body, headers=headers)

    def get(self, path: str) -> httpx.Response:
        return self.http.get(path, headers=self._sign("GET", path, b""))

    def approval_signature(self, tx: dict) -> str:
        amount = Decimal(tx["amount"]).quantize(Decimal("0.00000001"))
        message = f"{tx['transaction_id']}\n{tx['escrow_contract_id']}\n{amount}\n{tx['type']}"
        return self.signing_key.sign(message.encode(), encoder=HexEncoder).signature.decode()


def main() -> None:
    banner("Audit Escrow Demo")
    health = expect(httpx.get(f"{BASE_URL}/health"), 200, "Health check")
    print(f"  API at {BASE_URL}: {health['status']}")

    carol = ProfileClient("Carol", BLUE)
    dave = ProfileClient("Dave", GREEN)
    erin = ProfileClient("Erin", YELLOW)

    step(1, "Register profiles")
    carol.register("project_owner")
    dave.register("auditor")
    erin.register("admin", is_arbitrator=True)
    for p in (carol, dave, erin):
        party_says(p.name, p.color, f"profile {p.profile_id}")

    step(2, "Carol opens a multisig audit contract with two milestones")
    contract = expect(carol.post("/contracts", {
        "title": "Lending pool audit",
        "description": "Full review of the lending pool contracts",
        "auditor_id": dave.profile_id,
        "total_amount": "12000",
        "currency": "USDC",
        "requires_multisig": True,
        "milestones": [
            {"title": "Initial findings report", "amount": "5000"},
            {"title": "Fix verification", "amount": "7000"},
        ],
    }), 201, "Create contract")
    contract_id = contract["contract_id"]
    show_json(contract, ["contract_id", "status", "total_amount", "currency"])

    step(3, "Dave accepts the engagement")
    contract = expect(dave.post(f"/contracts/{contract_id}/activate"), 200, "Activate")
    party_says("Dave", GREEN, f"contract is {contract['status']}")

    step(4, "Dave delivers the first milestone")
    first = contract["milestones"][0]
    milestone = expect(
        dave.post(f"/milestones/{first['milestone_id']}/completion", {"completed": True}),
        200, "Complete milestone",
    )
    party_says("Dave", GREEN, f"'{milestone['title']}' completed at {milestone['completed_at']}")

    step(5, "Carol requests the milestone payment")
    tx = expect(carol.post(f"/contracts/{contract_id}/transactions", {
        "amount": first["amount"],
        "type": "milestone_payment",
        "milestone_id": first["milestone_id"],
        "idempotency_key": f"milestone-{first['milestone_id']}",
    }), 201, "Create transaction")
    show_json(tx, ["transaction_id", "type", "amount", "status"])

    step(6, "Both parties sign the payment")
    for signer in (carol, dave):
        quorum = expect(
            signer.post(f"/transactions/{tx['transaction_id']}/approve",
                        {"signature": signer.approval_signature(tx)}),
            200, f"Approve by {signer.name}",
        )
        party_says(
            signer.name, signer.color,
            f"signed ({quorum['approvals_count']}/{quorum['quorum_size']})",
        )
    if not quorum["approved"]:
        fail("Transaction did not reach quorum")

    step(7, "Settlement is recorded")
    settled = expect(
        carol.post(f"/transactions/{tx['transaction_id']}/settle",
                   {"settlement_hash": "0x" + secrets.token_hex(32)}),
        200, "Settle",
    )
    show_json(settled, ["status", "settlement_hash"])

    step(8, "Carol disputes the fix verification schedule")
    dispute = expect(carol.post(f"/contracts/{contract_id}/disputes", {
        "reason": "Fix verification is two weeks overdue",
        "milestone_id": contract["milestones"][1]["milestone_id"],
    }), 201, "Open dispute")
    party_says("Carol", BLUE, dispute["reason"])

    step(9, "Erin arbitrates")
    expect(erin.post(f"/disputes/{dispute['dispute_id']}/review"), 200, "Start review")
    expect(dave.post(f"/disputes/{dispute['dispute_id']}/comments",
                     {"comment": "Fixes landed late; verification starts Monday"}), 201, "Comment")
    resolved = expect(erin.post(f"/disputes/{dispute['dispute_id']}/resolve",
                                {"resolution": "Deadline extended by one week"}), 200, "Resolve")
    party_says("Erin", YELLOW, resolved["resolution"])
    contract = expect(erin.post(f"/contracts/{contract_id}/reinstate"), 200, "Reinstate")
    party_says("Erin", YELLOW, f"contract is {contract['status']} again")

    step(10, "Contract history")
    history = expect(carol.get(f"/contracts/{contract_id}/events"), 200, "Events")
    for event in history:
        print(f"         {MAGENTA}{event['event_type']:<28}{RESET} {event['message']}")

    banner("Demo Complete")


if __name__ == "__main__":
    main()
