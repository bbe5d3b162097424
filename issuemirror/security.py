"""Security-related helpers (webhook signature validation).

GitHub signs each webhook delivery with HMAC-SHA256 over the raw request body,
keyed by the webhook secret, and sends it as `X-Hub-Signature-256: sha256=<hex>`.
"""

from __future__ import annotations

import hashlib
import hmac
import logging

from issuemirror.config import settings

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    """Signature header value GitHub would send for `body`."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


class WebhookSignatureValidator:
    """Validate `X-Hub-Signature-256` headers.

    Without a configured secret every delivery is accepted (development mode).
    """

    def __init__(self, secret: str | None = None):
        # An explicit empty string disables validation regardless of settings.
        self._secret = secret if secret is not None else settings.webhook_secret

    def validate(self, body: bytes, signature_header: str | None) -> bool:
        if not self._secret:
            logger.warning("Webhook secret not configured, skipping signature validation")
            return True

        if not signature_header:
            logger.warning("Webhook delivery without signature header")
            return False

        if signature_header[: len(SIGNATURE_PREFIX)].lower() != SIGNATURE_PREFIX:
            logger.warning("Webhook signature header has an unexpected format")
            return False

        received = signature_header[len(SIGNATURE_PREFIX) :].strip().lower()
        expected = compute_signature(body, self._secret)[len(SIGNATURE_PREFIX) :]
        if not hmac.compare_digest(received.encode("ascii", "replace"), expected.encode("ascii")):
            logger.warning("Webhook signature mismatch")
            return False
        return True
