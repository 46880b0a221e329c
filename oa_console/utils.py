"""
Utility functions for the console backend.
"""

import base64
import hashlib
import hmac
import logging
import time
import uuid

logger = logging.getLogger(__name__)


def compute_line_signature(body: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 of the raw body, as LINE sends it in x-line-signature."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_line_signature(body: bytes, signature: str, secret: str) -> bool:
    """
    Verify a webhook signature.

    Args:
        body: Raw request body bytes, exactly as received
        signature: Value of the x-line-signature header
        secret: Channel secret

    Returns:
        True if signature is valid, False otherwise
    """
    logger.debug(f"Body length: {len(body)} bytes, signature: {signature[:8]}...")

    expected_signature = compute_line_signature(body, secret)

    # Constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(
        expected_signature.encode("ascii"),
        signature.encode("utf-8", errors="replace"),
    )
    logger.info(f"Signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def generate_message_id() -> str:
    """
    Id for an outgoing message: nanosecond clock plus a random suffix, so two
    sends in the same millisecond never collide.
    """
    return f"{time.time_ns()}-{uuid.uuid4().hex[:12]}"
