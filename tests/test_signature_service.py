"""
Tests for webhook signature verification.
"""

import hashlib
import hmac
import json
import time

import pytest
import stripe

from reconciler.services.signature_service import (
    compute_lemonsqueezy_signature,
    verify_lemonsqueezy_signature,
    verify_lemonsqueezy_signature_with_result,
    verify_stripe_signature,
    verify_stripe_signature_with_result,
)


SECRET = "whsec_unit_test_secret"
BODY = json.dumps({"id": "evt_1", "type": "customer.updated"}).encode("utf-8")


def stripe_header(body: bytes, secret: str = SECRET, timestamp: int = None) -> str:
    ts = timestamp if timestamp is not None else int(time.time())
    digest = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


class TestStripeSignature:

    def test_valid_signature(self):
        assert verify_stripe_signature(BODY, stripe_header(BODY), SECRET) is True

    def test_wrong_secret(self):
        header = stripe_header(BODY, secret="whsec_other")
        assert verify_stripe_signature(BODY, header, SECRET) is False

    def test_tampered_body(self):
        header = stripe_header(BODY)
        assert verify_stripe_signature(BODY + b" ", header, SECRET) is False

    def test_expired_timestamp(self):
        header = stripe_header(BODY, timestamp=int(time.time()) - 3600)
        result = verify_stripe_signature_with_result(BODY, header, SECRET, tolerance=300)
        assert result.valid is False
        assert result.error == "Invalid signature"

    def test_garbage_header(self):
        assert verify_stripe_signature(BODY, "not-a-signature", SECRET) is False

    @pytest.mark.parametrize("body, header, secret, error", [
        (BODY, None, SECRET, "Missing signature"),
        (BODY, "", SECRET, "Missing signature"),
        (b"", "t=1,v1=abc", SECRET, "Empty payload"),
        (BODY, "t=1,v1=abc", "", "Webhook secret not configured"),
    ])
    def test_fails_closed(self, body, header, secret, error):
        result = verify_stripe_signature_with_result(body, header, secret)
        assert result.valid is False
        assert result.error == error

    def test_non_utf8_body_rejected(self):
        body = b"\xff\xfe\xfa"
        result = verify_stripe_signature_with_result(body, "t=1,v1=abc", SECRET)
        assert result.valid is False

    def test_unexpected_sdk_error_is_reported_not_raised(self, monkeypatch):
        def broken_verify_header(payload, header, secret, tolerance=None):
            raise ValueError("malformed header value")

        monkeypatch.setattr(stripe.WebhookSignature, "verify_header", broken_verify_header)

        result = verify_stripe_signature_with_result(BODY, stripe_header(BODY), SECRET)

        assert result.valid is False
        assert result.error == "Verification error"
        assert verify_stripe_signature(BODY, stripe_header(BODY), SECRET) is False


class TestLemonSqueezySignature:

    def test_valid_signature(self):
        signature = compute_lemonsqueezy_signature(BODY, SECRET)
        assert verify_lemonsqueezy_signature(BODY, signature, SECRET) is True

    def test_signature_is_hex_sha256(self):
        expected = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
        assert compute_lemonsqueezy_signature(BODY, SECRET) == expected
        assert len(expected) == 64

    def test_wrong_secret(self):
        signature = compute_lemonsqueezy_signature(BODY, "other")
        assert verify_lemonsqueezy_signature(BODY, signature, SECRET) is False

    def test_length_mismatch(self):
        result = verify_lemonsqueezy_signature_with_result(BODY, "abc123", SECRET)
        assert result.valid is False
        assert result.error == "Signature length mismatch"

    def test_same_length_wrong_digest(self):
        result = verify_lemonsqueezy_signature_with_result(BODY, "0" * 64, SECRET)
        assert result.valid is False
        assert result.error == "Invalid signature"

    @pytest.mark.parametrize("body, signature, secret", [
        (BODY, None, SECRET),
        (BODY, "", SECRET),
        (b"", "0" * 64, SECRET),
        (BODY, "0" * 64, ""),
    ])
    def test_fails_closed(self, body, signature, secret):
        assert verify_lemonsqueezy_signature(body, signature, secret) is False
