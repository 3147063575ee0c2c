"""Webhook signature verification.

Every provider signs the raw request body with a shared secret and sends
the hex digest in a header:

- Paystack: HMAC-SHA512 with the secret key, ``x-paystack-signature``
- Flutterwave: HMAC-SHA256 with the dashboard secret hash, ``verif-hash``
- Etegram: HMAC-SHA256 with the webhook secret, ``x-etegram-signature``.
  Etegram documents no webhook signature; this scheme is ours and only
  applies when ``ETEGRAM_WEBHOOK_SECRET`` is set, e.g. behind a signing
  proxy. Real Etegram deliveries arrive unsigned, so they are accepted only
  with ``ETEGRAM_WEBHOOK_SECRET`` empty and ``WEBHOOK_ALLOW_UNSIGNED`` on.

Comparison is constant-time. A provider without a configured secret is
rejected unless ``WEBHOOK_ALLOW_UNSIGNED`` is on for the deployment.
"""

from __future__ import annotations

import hashlib
import hmac
import logging

from servixing.core.config import settings
from servixing.models.enums import Provider

logger = logging.getLogger(__name__)

_ALGORITHMS = {
    Provider.PAYSTACK: hashlib.sha512,
    Provider.FLUTTERWAVE: hashlib.sha256,
    Provider.ETEGRAM: hashlib.sha256,
}


def provider_secret(provider: Provider) -> str:
    return {
        Provider.PAYSTACK: settings.PAYSTACK_SECRET_KEY,
        Provider.FLUTTERWAVE: settings.FLUTTERWAVE_SECRET_HASH,
        Provider.ETEGRAM: settings.ETEGRAM_WEBHOOK_SECRET,
    }[provider] or ""


def compute_signature(raw_body: bytes, provider: Provider | str, secret: str) -> str:
    provider = Provider(provider)
    return hmac.new(secret.encode("utf-8"), raw_body, _ALGORITHMS[provider]).hexdigest()


def verify(
    raw_body: bytes,
    signature_header: str | None,
    provider: Provider | str,
    secret: str | None = None,
    allow_unsigned: bool | None = None,
) -> bool:
    """Return True when ``signature_header`` matches ``raw_body`` for ``provider``.

    Mismatches return False. Raises TypeError for a non-bytes body and
    ValueError for an unsupported provider.
    """
    if not isinstance(raw_body, (bytes, bytearray)):
        raise TypeError(f"raw_body must be bytes, got {type(raw_body).__name__}")
    provider = Provider(provider)

    if secret is None:
        secret = provider_secret(provider)
    if not secret:
        if allow_unsigned is None:
            allow_unsigned = settings.WEBHOOK_ALLOW_UNSIGNED
        if allow_unsigned:
            logger.warning("No webhook secret for %s; accepting unsigned delivery (WEBHOOK_ALLOW_UNSIGNED)", provider.value)
            return True
        logger.warning("No webhook secret for %s; rejecting delivery", provider.value)
        return False

    received = (signature_header or "").strip().lower()
    if not received:
        return False

    expected = compute_signature(bytes(raw_body), provider, secret)
    return hmac.compare_digest(expected.encode("ascii"), received.encode("utf-8"))
