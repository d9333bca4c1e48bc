"""
HMAC-SHA256 signing for outbound webhook deliveries
"""

import hashlib
import hmac
import secrets

SIGNATURE_PREFIX = "sha256="


def generate_webhook_secret() -> str:
    """New signing secret: ``whsec_`` followed by 64 hex characters"""
    return f"whsec_{secrets.token_hex(32)}"


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the exact bytes sent on the wire"""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def sign_payload(body: bytes, secret: str) -> str:
    """
    Build the signature header value for a delivery body

    Args:
        body: Serialized payload bytes
        secret: The subscription's signing secret

    Returns:
        ``sha256=<hex>``
    """
    return SIGNATURE_PREFIX + compute_signature(body, secret)


def verify_webhook_signature(body: bytes, signature: str, secret: str) -> bool:
    """
    Check a signature header the way a receiver would

    Accepts the value with or without the ``sha256=`` prefix and compares
    in constant time.
    """
    if not signature or not secret:
        return False
    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]
    return hmac.compare_digest(compute_signature(body, secret), signature)
