"""
Platform store: persistence interface for API keys, webhooks, deliveries and audit logs

Every mutation is a single store call so that implementations can make it
atomic (one UPDATE statement, or one critical section in memory).
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from ..models.platform import ApiKey, AuditLog, Webhook, WebhookDelivery, utcnow


class PlatformStore(ABC):
    """Abstract persistence for the developer platform"""

    # API keys
    @abstractmethod
    async def create_api_key(self, api_key: ApiKey) -> ApiKey: ...

    @abstractmethod
    async def get_api_key(self, key_id: UUID) -> Optional[ApiKey]: ...

    @abstractmethod
    async def get_api_key_by_public_key(self, public_key: str) -> Optional[ApiKey]: ...

    @abstractmethod
    async def list_api_keys(self, user_id: Optional[str] = None) -> List[ApiKey]:
        """Keys for one user (all keys when ``user_id`` is None), oldest first"""

    @abstractmethod
    async def update_api_key(self, key_id: UUID, **changes) -> Optional[ApiKey]: ...

    @abstractmethod
    async def increment_usage(self, key_id: UUID, now: datetime) -> Optional[ApiKey]:
        """``daily_requests += 1`` and ``last_used_at = now``"""

    @abstractmethod
    async def reset_usage(self, key_id: UUID, now: datetime) -> Optional[ApiKey]:
        """``daily_requests = 0`` and ``last_reset_at = now``"""

    # Webhooks
    @abstractmethod
    async def create_webhook(self, webhook: Webhook) -> Webhook: ...

    @abstractmethod
    async def get_webhook(self, webhook_id: UUID) -> Optional[Webhook]: ...

    @abstractmethod
    async def list_webhooks(self, api_key_ids: Optional[List[UUID]] = None) -> List[Webhook]:
        """Webhooks owned by the given keys (all webhooks when None)"""

    @abstractmethod
    async def list_subscribed_webhooks(self, event: str) -> List[Webhook]:
        """Active webhooks subscribed to ``event`` or to ``*``"""

    @abstractmethod
    async def update_webhook(self, webhook_id: UUID, **changes) -> Optional[Webhook]: ...

    @abstractmethod
    async def record_webhook_success(self, webhook_id: UUID, now: datetime) -> Optional[Webhook]:
        """``failure_count = 0`` and ``last_delivered_at = now``"""

    @abstractmethod
    async def record_webhook_failure(self, webhook_id: UUID, threshold: int) -> Optional[Webhook]:
        """``failure_count += 1``; deactivate once it reaches ``threshold``"""

    # Deliveries and audit logs
    @abstractmethod
    async def add_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery: ...

    @abstractmethod
    async def list_deliveries(self, webhook_id: UUID, limit: int = 50) -> List[WebhookDelivery]:
        """Newest first"""

    @abstractmethod
    async def add_audit_log(self, entry: AuditLog) -> AuditLog: ...

    @abstractmethod
    async def list_audit_logs(self, api_key_ids: List[UUID], limit: int = 100) -> List[AuditLog]:
        """Newest first"""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryPlatformStore(PlatformStore):
    """In-process store guarded by one asyncio lock"""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._api_keys: Dict[UUID, ApiKey] = {}
        self._webhooks: Dict[UUID, Webhook] = {}
        self._deliveries: List[WebhookDelivery] = []
        self._audit_logs: List[AuditLog] = []

    async def create_api_key(self, api_key: ApiKey) -> ApiKey:
        async with self._lock:
            self._api_keys[api_key.id] = api_key
            return api_key.model_copy(deep=True)

    async def get_api_key(self, key_id: UUID) -> Optional[ApiKey]:
        record = self._api_keys.get(key_id)
        return record.model_copy(deep=True) if record else None

    async def get_api_key_by_public_key(self, public_key: str) -> Optional[ApiKey]:
        for record in self._api_keys.values():
            if record.public_key == public_key:
                return record.model_copy(deep=True)
        return None

    async def list_api_keys(self, user_id: Optional[str] = None) -> List[ApiKey]:
        records = [
            record for record in self._api_keys.values()
            if user_id is None or record.user_id == user_id
        ]
        records.sort(key=lambda record: record.created_at)
        return [record.model_copy(deep=True) for record in records]

    async def update_api_key(self, key_id: UUID, **changes) -> Optional[ApiKey]:
        async with self._lock:
            return self._update_key(key_id, **changes)

    async def increment_usage(self, key_id: UUID, now: datetime) -> Optional[ApiKey]:
        async with self._lock:
            record = self._api_keys.get(key_id)
            if record is None:
                return None
            return self._update_key(key_id, daily_requests=record.daily_requests + 1, last_used_at=now)

    async def reset_usage(self, key_id: UUID, now: datetime) -> Optional[ApiKey]:
        async with self._lock:
            return self._update_key(key_id, daily_requests=0, last_reset_at=now)

    def _update_key(self, key_id: UUID, **changes) -> Optional[ApiKey]:
        record = self._api_keys.get(key_id)
        if record is None:
            return None
        updated = record.model_copy(update={**changes, "updated_at": utcnow()})
        self._api_keys[key_id] = updated
        return updated.model_copy(deep=True)

    async def create_webhook(self, webhook: Webhook) -> Webhook:
        async with self._lock:
            self._webhooks[webhook.id] = webhook
            return webhook.model_copy(deep=True)

    async def get_webhook(self, webhook_id: UUID) -> Optional[Webhook]:
        record = self._webhooks.get(webhook_id)
        return record.model_copy(deep=True) if record else None

    async def list_webhooks(self, api_key_ids: Optional[List[UUID]] = None) -> List[Webhook]:
        records = [
            record for record in self._webhooks.values()
            if api_key_ids is None or record.api_key_id in api_key_ids
        ]
        records.sort(key=lambda record: record.created_at)
        return [record.model_copy(deep=True) for record in records]

    async def list_subscribed_webhooks(self, event: str) -> List[Webhook]:
        return [
            record.model_copy(deep=True)
            for record in self._webhooks.values()
            if record.is_active and record.subscribes_to(event)
        ]

    async def update_webhook(self, webhook_id: UUID, **changes) -> Optional[Webhook]:
        async with self._lock:
            return self._update_webhook(webhook_id, **changes)

    async def record_webhook_success(self, webhook_id: UUID, now: datetime) -> Optional[Webhook]:
        async with self._lock:
            return self._update_webhook(webhook_id, failure_count=0, last_delivered_at=now)

    async def record_webhook_failure(self, webhook_id: UUID, threshold: int) -> Optional[Webhook]:
        async with self._lock:
            record = self._webhooks.get(webhook_id)
            if record is None:
                return None
            failures = record.failure_count + 1
            changes = {"failure_count": failures}
            if failures >= threshold:
                changes["is_active"] = False
            return self._update_webhook(webhook_id, **changes)

    def _update_webhook(self, webhook_id: UUID, **changes) -> Optional[Webhook]:
        record = self._webhooks.get(webhook_id)
        if record is None:
            return None
        updated = record.model_copy(update={**changes, "updated_at": utcnow()})
        self._webhooks[webhook_id] = updated
        return updated.model_copy(deep=True)

    async def add_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery:
        async with self._lock:
            self._deliveries.append(delivery)
            return delivery

    async def list_deliveries(self, webhook_id: UUID, limit: int = 50) -> List[WebhookDelivery]:
        # Appended in time order; reverse to get newest first
        matching = [d for d in reversed(self._deliveries) if d.webhook_id == webhook_id]
        return matching[:limit]

    async def add_audit_log(self, entry: AuditLog) -> AuditLog:
        async with self._lock:
            self._audit_logs.append(entry)
            return entry

    async def list_audit_logs(self, api_key_ids: List[UUID], limit: int = 100) -> List[AuditLog]:
        matching = [e for e in reversed(self._audit_logs) if e.api_key_id in api_key_ids]
        return matching[:limit]
