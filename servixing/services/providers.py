from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from servixing.models.enums import Provider
from servixing.services import payment_events, webhook_signatures
from servixing.services.payment_events import NormalizedEvent


@dataclass(frozen=True)
class ProviderAdapter:
    """Webhook verify/normalize pair for one gateway."""

    provider: Provider
    signature_header: str

    def verify(self, raw_body: bytes, signature_header: str | None) -> bool:
        return webhook_signatures.verify(raw_body, signature_header, self.provider)

    def normalize(self, raw_event: dict) -> NormalizedEvent:
        return payment_events.normalize(self.provider, raw_event)


ADAPTERS: Dict[Provider, ProviderAdapter] = {
    Provider.PAYSTACK: ProviderAdapter(Provider.PAYSTACK, "x-paystack-signature"),
    Provider.FLUTTERWAVE: ProviderAdapter(Provider.FLUTTERWAVE, "verif-hash"),
    # Etegram sends no signature of its own; see webhook_signatures.
    Provider.ETEGRAM: ProviderAdapter(Provider.ETEGRAM, "x-etegram-signature"),
}


def get_adapter(provider: Provider | str) -> ProviderAdapter:
    """Raises ValueError for an unsupported provider name."""
    return ADAPTERS[Provider(provider)]
