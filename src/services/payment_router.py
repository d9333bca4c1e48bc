"""
Payment router: picks a backend for each order and dispatches follow-up operations

The router is created once per application and reached through a FastAPI
dependency. It owns its routing configuration, the adapter registry and the
routing counters.
"""

from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from ..config.settings import get_settings
from ..integrations import PaymentProviderAdapter, build_default_adapters
from ..models.errors import NoProviderConfigured, UnknownProviderError, ValidationError
from ..models.payments import (
    CancelResult,
    CaptureResult,
    DisputeResult,
    FeeComparisonEntry,
    OrderType,
    PaymentOrder,
    PaymentResult,
    PaymentStatusResult,
    ProviderInfo,
    ProviderKey,
    RefundResult,
    RoutingConfig,
    RoutingConfigUpdate,
    RoutingStats,
)
from ..utils.logger import log, mask_key
from ..utils.metrics import record_dispute, record_payment_routed

ProviderRef = Union[ProviderKey, str]


def _coerce_key(value: ProviderRef) -> ProviderKey:
    if isinstance(value, ProviderKey):
        return value
    try:
        return ProviderKey(str(value).lower())
    except ValueError:
        raise UnknownProviderError(str(value))


def load_routing_config(overrides: Optional[Mapping[str, Any]] = None) -> RoutingConfig:
    """Defaults merged with ``PAYGATE_ROUTING_*`` overrides"""
    overrides = overrides if overrides is not None else get_settings().routing
    config = RoutingConfig()
    if overrides:
        config = _merge(config, overrides)
    return config


def _merge(config: RoutingConfig, changes: Mapping[str, Any]) -> RoutingConfig:
    update: Dict[str, Any] = {}
    for field_name, value in changes.items():
        if value is None:
            continue
        if field_name not in RoutingConfig.model_fields:
            raise ValidationError(f"Unknown routing field: {field_name}", field=field_name)
        if field_name == "fallback_chain":
            update[field_name] = [_coerce_key(item) for item in value]
        else:
            update[field_name] = _coerce_key(value)
    return config.model_copy(update=update)


class PaymentRouter:
    """Routes payment orders across the configured backends"""

    def __init__(
        self,
        config: Optional[RoutingConfig] = None,
        adapters: Optional[Dict[ProviderKey, PaymentProviderAdapter]] = None,
    ):
        self._config = config or RoutingConfig()
        self._adapters = adapters if adapters is not None else build_default_adapters()
        self._stats = RoutingStats()

    # -- selection ---------------------------------------------------------

    def select_preferred(self, order: PaymentOrder) -> ProviderKey:
        """Preferred backend by order kind: crypto, international, in-person, pos, default"""
        config = self._config
        if order.order_type == OrderType.CRYPTO:
            return config.crypto
        if order.is_international:
            return config.international
        if order.order_type == OrderType.IN_PERSON:
            return config.in_person
        if order.order_type == OrderType.POS:
            return config.pos
        return config.default

    def resolve_provider(self, order: PaymentOrder) -> Tuple[ProviderKey, bool]:
        """
        Pick the adapter that will take the order

        Returns:
            (provider key, whether a fallback was used)

        Raises:
            NoProviderConfigured: neither the preferred nor any fallback adapter is configured
        """
        preferred = self.select_preferred(order)
        adapter = self._adapters.get(preferred)
        if adapter is not None and adapter.is_configured():
            return preferred, False

        for candidate in self._config.fallback_chain:
            if candidate == preferred:
                continue
            fallback = self._adapters.get(candidate)
            if fallback is not None and fallback.is_configured():
                log.warning(
                    f"Preferred provider {preferred.value} unavailable, falling back to {candidate.value}",
                    extra={
                        "event_type": "payment_fallback_used",
                        "order_id": order.id,
                        "preferred": preferred.value,
                        "provider": candidate.value,
                    },
                )
                return candidate, True

        raise NoProviderConfigured()

    # -- operations --------------------------------------------------------

    async def create_payment(self, order: PaymentOrder) -> PaymentResult:
        provider, used_fallback = self.resolve_provider(order)

        self._stats.total_routed += 1
        self._stats.by_provider[provider.value] = self._stats.by_provider.get(provider.value, 0) + 1
        if used_fallback:
            self._stats.fallbacks_used += 1
        record_payment_routed(provider.value, used_fallback)

        log.info(
            f"Routing order {order.id} to {provider.value}",
            extra={
                "event_type": "payment_routed",
                "order_id": order.id,
                "provider": provider.value,
                "order_type": order.order_type.value,
                "is_international": order.is_international,
                "fallback": used_fallback,
                "customer_email": mask_key(order.customer_email, 3),
            },
        )
        return await self._adapters[provider].create_payment(order)

    async def capture_payment(self, intent_id: str, provider: ProviderRef) -> CaptureResult:
        return await self._adapter(provider).capture_payment(intent_id)

    async def refund_payment(
        self,
        intent_id: str,
        provider: ProviderRef,
        amount: Optional[Decimal] = None,
        reason: Optional[str] = None,
    ) -> RefundResult:
        return await self._adapter(provider).refund_payment(intent_id, amount, reason)

    async def cancel_payment(self, intent_id: str, provider: ProviderRef) -> CancelResult:
        return await self._adapter(provider).cancel_payment(intent_id)

    async def get_status(self, intent_id: str, provider: ProviderRef) -> PaymentStatusResult:
        return await self._adapter(provider).get_status(intent_id)

    async def handle_dispute(self, payload: Mapping[str, Any], provider: ProviderRef) -> DisputeResult:
        result = await self._adapter(provider).handle_dispute(payload)
        record_dispute(result.provider.value, result.resolution.value)
        log.info(
            f"Dispute callback from {result.provider.value}: {result.resolution.value}",
            extra={
                "event_type": "dispute_classified",
                "provider": result.provider.value,
                "resolution": result.resolution.value,
                "dispute_id": result.dispute_id,
            },
        )
        return result

    def verify_callback(self, provider: ProviderRef, body: bytes, headers: Mapping[str, str]) -> bool:
        return self._adapter(provider).verify_callback(body, headers)

    # -- introspection -----------------------------------------------------

    def get_provider_status(self) -> Dict[str, ProviderInfo]:
        return {
            key.value: ProviderInfo(configured=adapter.is_configured(), name=adapter.display_name)
            for key, adapter in self._adapters.items()
        }

    def get_fee_comparison(
        self, amount: Decimal, order_type: OrderType = OrderType.ONLINE
    ) -> Dict[str, FeeComparisonEntry]:
        comparison = {}
        for key, adapter in self._adapters.items():
            estimate = adapter.estimate_fee(amount, order_type)
            comparison[key.value] = FeeComparisonEntry(
                rate=estimate.rate,
                estimated=estimate.estimated,
                configured=adapter.is_configured(),
            )
        return comparison

    def get_routing_stats(self) -> RoutingStats:
        return self._stats.model_copy(deep=True)

    def get_routing_config(self) -> RoutingConfig:
        return self._config.model_copy(deep=True)

    def update_routing_config(self, changes: Union[RoutingConfigUpdate, Mapping[str, Any]]) -> RoutingConfig:
        """Merge the given fields into the routing config; takes effect for the next order"""
        if isinstance(changes, RoutingConfigUpdate):
            changes = changes.model_dump(exclude_none=True)
        self._config = _merge(self._config, changes)
        log.info(
            "Routing configuration updated",
            extra={
                "event_type": "routing_config_updated",
                "changes": dict(changes),
                "config": self._config.model_dump(mode="json"),
            },
        )
        return self.get_routing_config()

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()

    def _adapter(self, provider: ProviderRef) -> PaymentProviderAdapter:
        key = _coerce_key(provider)
        adapter = self._adapters.get(key)
        if adapter is None:
            raise UnknownProviderError(key.value)
        return adapter
