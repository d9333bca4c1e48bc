"""
Payment backend adapters (Stripe, Adyen, GoDaddy Payments, Square, Coinbase Commerce)
"""

from typing import Dict, Optional

import httpx

from ..models.payments import ProviderKey
from .base import PaymentProviderAdapter
from .stripe import StripeAdapter
from .adyen import AdyenAdapter
from .godaddy import GoDaddyAdapter
from .square import SquareAdapter
from .coinbase import CoinbaseAdapter


def build_default_adapters(
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[ProviderKey, PaymentProviderAdapter]:
    """One adapter per supported backend, keyed by provider"""
    adapters = [
        StripeAdapter(transport=transport),
        AdyenAdapter(transport=transport),
        GoDaddyAdapter(transport=transport),
        SquareAdapter(transport=transport),
        CoinbaseAdapter(transport=transport),
    ]
    return {adapter.key: adapter for adapter in adapters}


__all__ = [
    "PaymentProviderAdapter",
    "StripeAdapter",
    "AdyenAdapter",
    "GoDaddyAdapter",
    "SquareAdapter",
    "CoinbaseAdapter",
    "build_default_adapters",
]
