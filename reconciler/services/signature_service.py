"""
Subscription Reconciler - Webhook Signature Verification

Authenticates inbound webhook bodies against the provider's shared secret.
Every check fails closed: a missing secret, header or body is invalid, and
nothing raises past these functions.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

import stripe

logger = logging.getLogger(__name__)


@dataclass
class SignatureCheck:
    """Outcome of a signature check, with the reason when it failed."""
    valid: bool
    error: Optional[str] = None


def verify_stripe_signature_with_result(
    payload: bytes,
    signature: Optional[str],
    secret: str,
    tolerance: int = 300,
) -> SignatureCheck:
    """
    Verify a Stripe-Signature header against the raw request body.

    Args:
        payload: Raw request body bytes
        signature: Stripe-Signature header value (t=...,v1=...)
        secret: Endpoint signing secret (whsec_...)
        tolerance: Maximum age of the signed timestamp in seconds

    Returns:
        SignatureCheck with valid=True if the body was signed with the secret
    """
    if not secret:
        logger.error("Stripe webhook secret is not configured")
        return SignatureCheck(False, "Webhook secret not configured")
    if not signature:
        return SignatureCheck(False, "Missing signature")
    if not payload:
        return SignatureCheck(False, "Empty payload")

    try:
        # The SDK signs "<timestamp>.<payload>" as text
        text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        logger.warning(f"Stripe signature check could not decode payload: {e}")
        return SignatureCheck(False, "Undecodable payload")

    try:
        stripe.WebhookSignature.verify_header(text, signature, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Stripe signature verification failed: {e}")
        return SignatureCheck(False, "Invalid signature")
    except Exception as e:
        logger.error(f"Stripe signature verification error: {type(e).__name__}: {e}")
        return SignatureCheck(False, "Verification error")

    return SignatureCheck(True)


def verify_stripe_signature(
    payload: bytes,
    signature: Optional[str],
    secret: str,
    tolerance: int = 300,
) -> bool:
    """Boolean form of verify_stripe_signature_with_result."""
    return verify_stripe_signature_with_result(payload, signature, secret, tolerance).valid


def compute_lemonsqueezy_signature(payload: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest Lemon Squeezy sends in X-Signature."""
    return hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).hexdigest()


def verify_lemonsqueezy_signature_with_result(
    payload: bytes,
    signature: Optional[str],
    secret: str,
) -> SignatureCheck:
    """
    Verify a Lemon Squeezy X-Signature header.

    Args:
        payload: Raw request body bytes
        signature: X-Signature header value (hex digest)
        secret: Webhook signing secret

    Returns:
        SignatureCheck with valid=True if the digest matches
    """
    if not secret:
        logger.error("Lemon Squeezy webhook secret is not configured")
        return SignatureCheck(False, "Webhook secret not configured")
    if not signature:
        return SignatureCheck(False, "Missing signature")
    if not payload:
        return SignatureCheck(False, "Empty payload")

    expected = compute_lemonsqueezy_signature(payload, secret)
    if len(expected) != len(signature):
        return SignatureCheck(False, "Signature length mismatch")

    if not hmac.compare_digest(expected, signature):
        return SignatureCheck(False, "Invalid signature")

    return SignatureCheck(True)


def verify_lemonsqueezy_signature(
    payload: bytes,
    signature: Optional[str],
    secret: str,
) -> bool:
    """Boolean form of verify_lemonsqueezy_signature_with_result."""
    return verify_lemonsqueezy_signature_with_result(payload, signature, secret).valid
