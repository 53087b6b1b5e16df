"""Ed25519 signature utilities using PyNaCl.

Two messages are signed in this service: every authenticated HTTP request,
and every multisig approval of a ledger transaction.
"""

import hashlib
import secrets
from datetime import UTC, datetime
from decimal import Decimal

from nacl.encoding import HexEncoder
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey


def generate_keypair() -> tuple[str, str]:
    """Generate an Ed25519 keypair. Returns (private_key_hex, public_key_hex)."""
    signing_key = SigningKey.generate()
    private_hex = signing_key.encode(encoder=HexEncoder).decode()
    public_hex = signing_key.verify_key.encode(encoder=HexEncoder).decode()
    return private_hex, public_hex


def is_valid_public_key(public_key_hex: str) -> bool:
    try:
        VerifyKey(public_key_hex.encode(), encoder=HexEncoder)
        return True
    except (ValueError, TypeError):
        return False


def build_signature_message(
    timestamp: str,
    method: str,
    path: str,
    body: bytes,
) -> bytes:
    """Build the request message to sign: timestamp\\nmethod\\npath\\nsha256(body)."""
    body_hash = hashlib.sha256(body).hexdigest()
    message = f"{timestamp}\n{method}\n{path}\n{body_hash}"
    return message.encode()


def build_approval_message(
    transaction_id: object,
    escrow_contract_id: object,
    amount: Decimal,
    transaction_type: str,
) -> bytes:
    """Build the approval message: transaction\\ncontract\\namount\\ntype.

    The amount is normalized to the ledger precision (eight decimal places)
    so "100" and "100.00" sign identically.
    """
    normalized = Decimal(amount).quantize(Decimal("0.00000001"))
    message = f"{transaction_id}\n{escrow_contract_id}\n{normalized}\n{transaction_type}"
    return message.encode()


def _sign(private_key_hex: str, message: bytes) -> str:
    signing_key = SigningKey(private_key_hex.encode(), encoder=HexEncoder)
    signed = signing_key.sign(message, encoder=HexEncoder)
    return signed.signature.decode()


def _verify(public_key_hex: str, signature_hex: str, message: bytes) -> bool:
    try:
        verify_key = VerifyKey(public_key_hex.encode(), encoder=HexEncoder)
        verify_key.verify(message, HexEncoder.decode(signature_hex.encode()))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


def sign_request(
    private_key_hex: str,
    timestamp: str,
    method: str,
    path: str,
    body: bytes,
) -> str:
    """Sign a request and return the hex-encoded signature."""
    return _sign(private_key_hex, build_signature_message(timestamp, method, path, body))


def verify_signature(
    public_key_hex: str,
    signature_hex: str,
    timestamp: str,
    method: str,
    path: str,
    body: bytes,
) -> bool:
    """Verify a request signature. Returns True if valid, False otherwise."""
    message = build_signature_message(timestamp, method, path, body)
    return _verify(public_key_hex, signature_hex, message)


def sign_approval(
    private_key_hex: str,
    transaction_id: object,
    escrow_contract_id: object,
    amount: Decimal,
    transaction_type: str,
) -> str:
    message = build_approval_message(transaction_id, escrow_contract_id, amount, transaction_type)
    return _sign(private_key_hex, message)


def verify_approval_signature(
    public_key_hex: str,
    signature_hex: str,
    transaction_id: object,
    escrow_contract_id: object,
    amount: Decimal,
    transaction_type: str,
) -> bool:
    message = build_approval_message(transaction_id, escrow_contract_id, amount, transaction_type)
    return _verify(public_key_hex, signature_hex, message)


def generate_nonce() -> str:
    """Generate a cryptographically secure nonce."""
    return secrets.token_hex(16)


def is_timestamp_valid(timestamp: str, max_age_seconds: int = 30) -> bool:
    """Check if a timestamp is within the allowed window."""
    try:
        ts = datetime.fromisoformat(timestamp)
        if ts.tzinfo is None:
            return False
        now = datetime.now(UTC)
        delta = abs((now - ts).total_seconds())
        return delta <= max_age_seconds
    except (ValueError, TypeError):
        return False
