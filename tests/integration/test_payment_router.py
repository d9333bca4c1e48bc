"""
Integration tests for payment routing: backend selection, fallback and routing configuration
"""

from decimal import Decimal

import pytest

from src.models.errors import NoProviderConfigured, UnknownProviderError, ValidationError
from src.models.payments import OrderType, PaymentOrder, ProviderKey, RoutingConfigUpdate
from src.services.payment_router import load_routing_config

pytestmark = pytest.mark.asyncio


def make_order(**overrides) -> PaymentOrder:
    fields = {
        "id": "ord_1001",
        "amount": Decimal("49.99"),
        "currency": "usd",
        "customer_email": "jane@example.com",
    }
    fields.update(overrides)
    return PaymentOrder(**fields)


class TestProviderSelection:
    """Preferred backend by order kind"""

    @pytest.mark.parametrize(
        "overrides, expected",
        [
            ({}, ProviderKey.STRIPE),
            ({"order_type": OrderType.CRYPTO}, ProviderKey.COINBASE),
            ({"is_international": True}, ProviderKey.ADYEN),
            ({"order_type": OrderType.IN_PERSON}, ProviderKey.GODADDY),
            ({"order_type": OrderType.POS}, ProviderKey.SQUARE),
            # crypto wins over the international flag
            ({"order_type": OrderType.CRYPTO, "is_international": True}, ProviderKey.COINBASE),
            # international wins over in-person
            ({"order_type": OrderType.IN_PERSON, "is_international": True}, ProviderKey.ADYEN),
        ],
    )
    async def test_select_preferred(self, payment_router, overrides, expected):
        assert payment_router.select_preferred(make_order(**overrides)) == expected

    async def test_currency_is_normalised(self):
        assert make_order(currency="eur").currency == "EUR"

    async def test_configured_preferred_backend_is_used(self, payment_router, configure_providers):
        configure_providers("square")

        provider, used_fallback = payment_router.resolve_provider(make_order(order_type=OrderType.POS))

        assert provider == ProviderKey.SQUARE
        assert used_fallback is False

    async def test_falls_back_in_chain_order(self, payment_router, configure_providers):
        configure_providers("adyen", "square")

        provider, used_fallback = payment_router.resolve_provider(make_order(order_type=OrderType.CRYPTO))

        # stripe is first in the chain but unconfigured
        assert provider == ProviderKey.ADYEN
        assert used_fallback is True

    async def test_fallback_skips_the_preferred_backend(self, payment_router, configure_providers):
        configure_providers("godaddy")

        provider, used_fallback = payment_router.resolve_provider(make_order())

        assert provider == ProviderKey.GODADDY
        assert used_fallback is True

    async def test_no_backend_configured(self, payment_router):
        with pytest.raises(NoProviderConfigured) as exc_info:
            payment_router.resolve_provider(make_order())

        assert exc_info.value.status_code == 503

    async def test_crypto_order_with_only_stripe_falls_back_to_stripe(self, payment_router, configure_providers):
        configure_providers("stripe")

        provider, used_fallback = payment_router.resolve_provider(make_order(order_type=OrderType.CRYPTO))

        assert provider == ProviderKey.STRIPE
        assert used_fallback is True

    async def test_crypto_order_without_card_fallback_is_refused(self, payment_router, configure_providers):
        configure_providers("stripe")
        payment_router.update_routing_config({"fallback_chain": ["coinbase"]})

        with pytest.raises(NoProviderConfigured):
            payment_router.resolve_provider(make_order(order_type=OrderType.CRYPTO))

    async def test_coinbase_is_not_in_default_fallback_chain(self, payment_router, configure_providers):
        configure_providers("coinbase")

        with pytest.raises(NoProviderConfigured):
            payment_router.resolve_provider(make_order())


class TestRoutingStats:
    async def test_stats_count_routed_orders_and_fallbacks(
        self, payment_router, provider_stub, configure_providers
    ):
        configure_providers("stripe")
        provider_stub.on("POST", "/payment_intents", {"id": "pi_1", "amount": 4999, "currency": "usd"})

        await payment_router.create_payment(make_order())
        await payment_router.create_payment(make_order(id="ord_1002", order_type=OrderType.POS))

        stats = payment_router.get_routing_stats()
        assert stats.total_routed == 2
        assert stats.by_provider == {"stripe": 2}
        assert stats.fallbacks_used == 1

    async def test_stats_are_a_snapshot(self, payment_router):
        stats = payment_router.get_routing_stats()
        stats.total_routed = 99

        assert payment_router.get_routing_stats().total_routed == 0

    async def test_failed_resolution_is_not_counted(self, payment_router):
        with pytest.raises(NoProviderConfigured):
            await payment_router.create_payment(make_order())

        assert payment_router.get_routing_stats().total_routed == 0


class TestRoutingConfig:
    async def test_partial_update_keeps_other_fields(self, payment_router):
        config = payment_router.update_routing_config(RoutingConfigUpdate(pos=ProviderKey.STRIPE))

        assert config.pos == ProviderKey.STRIPE
        assert config.default == ProviderKey.STRIPE
        assert config.crypto == ProviderKey.COINBASE

    async def test_update_applies_to_next_order(self, payment_router, configure_providers):
        configure_providers("stripe", "square")
        payment_router.update_routing_config({"pos": "stripe"})

        provider, used_fallback = payment_router.resolve_provider(make_order(order_type=OrderType.POS))

        assert provider == ProviderKey.STRIPE
        assert used_fallback is False

    async def test_update_accepts_fallback_chain_strings(self, payment_router):
        config = payment_router.update_routing_config({"fallback_chain": ["Square", "stripe"]})

        assert config.fallback_chain == [ProviderKey.SQUARE, ProviderKey.STRIPE]

    async def test_unknown_provider_rejected(self, payment_router):
        with pytest.raises(UnknownProviderError):
            payment_router.update_routing_config({"default": "paypal"})

        assert payment_router.get_routing_config().default == ProviderKey.STRIPE

    async def test_unknown_field_rejected(self, payment_router):
        with pytest.raises(ValidationError):
            payment_router.update_routing_config({"mobile": "stripe"})

    async def test_returned_config_is_a_copy(self, payment_router):
        config = payment_router.get_routing_config()
        config.fallback_chain.clear()

        assert payment_router.get_routing_config().fallback_chain

    async def test_load_routing_config_overrides(self):
        config = load_routing_config({"international": "stripe", "fallback_chain": ["adyen"]})

        assert config.international == ProviderKey.STRIPE
        assert config.fallback_chain == [ProviderKey.ADYEN]

    async def test_load_routing_config_defaults(self):
        config = load_routing_config({})

        assert config.default == ProviderKey.STRIPE
        assert config.fallback_chain == [
            ProviderKey.STRIPE,
            ProviderKey.ADYEN,
            ProviderKey.SQUARE,
            ProviderKey.GODADDY,
        ]


class TestOperationDispatch:
    async def test_operations_use_the_named_backend(self, payment_router, provider_stub, configure_providers):
        configure_providers("square")
        provider_stub.on("POST", "/complete", {"payment": {"status": "COMPLETED"}})

        result = await payment_router.capture_payment("sq_pay_1", "square")

        assert result.provider == ProviderKey.SQUARE
        assert result.success is True
        assert "squareupsandbox.com" in str(provider_stub.last_call().url)

    async def test_unknown_backend_name(self, payment_router):
        with pytest.raises(UnknownProviderError) as exc_info:
            await payment_router.capture_payment("pi_1", "paypal")

        assert exc_info.value.details == {"provider": "paypal"}

    async def test_provider_status(self, payment_router, configure_providers):
        configure_providers("stripe")

        status = payment_router.get_provider_status()

        assert set(status) == {"stripe", "adyen", "godaddy", "square", "coinbase"}
        assert status["stripe"].configured is True
        assert status["stripe"].name == "Stripe"
        assert status["coinbase"].configured is False

    async def test_fee_comparison(self, payment_router, configure_providers):
        configure_providers("stripe")

        fees = payment_router.get_fee_comparison(Decimal("100"))

        assert fees["stripe"].estimated == Decimal("3.20")
        assert fees["stripe"].rate == "2.9% + $0.30"
        assert fees["stripe"].configured is True
        assert fees["adyen"].estimated == Decimal("2.13")
        assert fees["coinbase"].estimated == Decimal("1.00")
        assert fees["godaddy"].configured is False

    async def test_fee_comparison_in_person_rates(self, payment_router):
        fees = payment_router.get_fee_comparison(Decimal("100"), OrderType.IN_PERSON)

        assert fees["godaddy"].estimated == Decimal("2.30")
        assert fees["square"].estimated == Decimal("2.70")
