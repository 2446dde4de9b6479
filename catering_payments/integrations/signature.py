"""Midtrans notification signature helpers."""
import hashlib
import hmac
from typing import Optional


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    """SHA-512 hex digest of ``order_id + status_code + gross_amount + server_key``."""
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def verify_signature(
    order_id: str,
    status_code: str,
    gross_amount: str,
    signature_key: Optional[str],
    server_key: str,
) -> bool:
    """Constant-time comparison of the supplied signature against the expected one."""
    if not server_key or not signature_key:
        return False
    expected = compute_signature(order_id, status_code, gross_amount, server_key)
    supplied = signature_key.strip().lower().encode("utf-8")
    return hmac.compare_digest(expected.encode("ascii"), supplied)


def redact(signature: Optional[str], keep: int = 20) -> str:
    if not signature:
        return ""
    return signature[:keep] + "..."
