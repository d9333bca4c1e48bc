"""
Webhook registry service: developer-owned subscriptions, delivery history and audit logs
"""

from typing import List, Optional
from uuid import UUID

from ..database.store import PlatformStore
from ..models.errors import NotFoundError, ValidationError
from ..models.platform import ApiKey, AuditLog, IssuedWebhook, Webhook, WebhookDelivery, utcnow
from ..utils.logger import log, mask_key
from ..utils.signing import generate_webhook_secret
from ..workers.webhook_dispatcher import WebhookDispatcher

DELIVERY_HISTORY_LIMIT = 50
AUDIT_LOG_LIMIT = 100


class WebhookService:
    """Webhook registration and history, scoped to one developer's keys"""

    def __init__(self, store: PlatformStore, dispatcher: Optional[WebhookDispatcher] = None):
        self.store = store
        self.dispatcher = dispatcher

    async def _owned_key_ids(self, user_id: str) -> List[UUID]:
        return [api_key.id for api_key in await self.store.list_api_keys(user_id)]

    async def _owning_key(self, user_id: str, api_key_id: Optional[UUID]) -> ApiKey:
        keys = [api_key for api_key in await self.store.list_api_keys(user_id) if api_key.is_active]
        if api_key_id is not None:
            keys = [api_key for api_key in keys if api_key.id == api_key_id]
        if not keys:
            raise ValidationError("An active API key is required to register webhooks", field="api_key_id")
        return keys[0]

    async def create_webhook(
        self, user_id: str, url: str, events: List[str], api_key_id: Optional[UUID] = None
    ) -> IssuedWebhook:
        """
        Register a subscription under one of the developer's active keys

        Returns:
            IssuedWebhook including the signing secret, shown only here
        """
        api_key = await self._owning_key(user_id, api_key_id)
        webhook = await self.store.create_webhook(
            Webhook(
                api_key_id=api_key.id,
                url=url,
                events=events,
                secret=generate_webhook_secret(),
            )
        )

        log.info(
            "Webhook registered",
            extra={
                "event_type": "webhook_created",
                "user_id": user_id,
                "webhook_id": str(webhook.id),
                "url": mask_key(url, visible=40),
                "events": events,
            },
        )
        return IssuedWebhook(**webhook.model_dump())

    async def list_webhooks(self, user_id: str) -> List[Webhook]:
        return await self.store.list_webhooks(await self._owned_key_ids(user_id))

    async def get_owned_webhook(self, user_id: str, webhook_id: UUID) -> Webhook:
        webhook = await self.store.get_webhook(webhook_id)
        if webhook is None or webhook.api_key_id not in await self._owned_key_ids(user_id):
            raise NotFoundError("Webhook", webhook_id)
        return webhook

    async def delete_webhook(self, user_id: str, webhook_id: UUID) -> Webhook:
        """Soft delete: the subscription is deactivated, its history kept"""
        await self.get_owned_webhook(user_id, webhook_id)
        webhook = await self.store.update_webhook(webhook_id, is_active=False)

        log.info(
            "Webhook deactivated",
            extra={"event_type": "webhook_deleted", "user_id": user_id, "webhook_id": str(webhook_id)},
        )
        return webhook

    async def list_deliveries(self, user_id: str, webhook_id: UUID) -> List[WebhookDelivery]:
        await self.get_owned_webhook(user_id, webhook_id)
        return await self.store.list_deliveries(webhook_id, limit=DELIVERY_HISTORY_LIMIT)

    async def send_test_ping(self, user_id: str, webhook_id: UUID) -> int:
        """
        Emit ``test.ping``

        The ping is an ordinary event, so it reaches every webhook subscribed
        to ``test.ping`` or ``*``, not only the one named in the request.
        """
        webhook = await self.get_owned_webhook(user_id, webhook_id)
        if self.dispatcher is None:
            return 0
        return await self.dispatcher.dispatch(
            "test.ping",
            {
                "message": "Test webhook from Paygate",
                "webhook_id": str(webhook.id),
                "sent_at": utcnow().isoformat(),
            },
        )

    async def list_audit_logs(self, user_id: str) -> List[AuditLog]:
        return await self.store.list_audit_logs(await self._owned_key_ids(user_id), limit=AUDIT_LOG_LIMIT)
