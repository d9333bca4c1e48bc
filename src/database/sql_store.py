"""
PostgreSQL-backed platform store (SQLAlchemy async ORM over asyncpg)
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import case, select, text, update
from sqlalchemy.orm import sessionmaker

from ..models.platform import ApiKey, AuditLog, Webhook, WebhookDelivery, utcnow
from ..models.sqlalchemy_models import (
    ApiAuditLogRecord,
    ApiKeyRecord,
    WebhookDeliveryRecord,
    WebhookRecord,
)
from ..utils.encryption import EncryptionService, get_encryption_service
from .connection import close_db, get_session_factory, get_engine
from .store import MemoryPlatformStore, PlatformStore


def _plain(changes: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in changes.items()}


class SqlAlchemyPlatformStore(PlatformStore):
    """Store backed by the api_keys, webhooks, webhook_deliveries and api_audit_logs tables"""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        encryption: Optional[EncryptionService] = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._encryption = encryption if encryption is not None else get_encryption_service()

    # -- conversion --------------------------------------------------------

    def _seal(self, secret: str) -> str:
        return self._encryption.encrypt(secret) if self._encryption else secret

    def _unseal(self, stored: str) -> str:
        return self._encryption.decrypt(stored) if self._encryption else stored

    def _webhook(self, record: Optional[WebhookRecord]) -> Optional[Webhook]:
        if record is None:
            return None
        webhook = Webhook.model_validate(record)
        return webhook.model_copy(update={"secret": self._unseal(record.secret)})

    @staticmethod
    def _api_key(record: Optional[ApiKeyRecord]) -> Optional[ApiKey]:
        return ApiKey.model_validate(record) if record is not None else None

    # -- API keys ----------------------------------------------------------

    async def create_api_key(self, api_key: ApiKey) -> ApiKey:
        async with self._session_factory() as session:
            async with session.begin():
                record = ApiKeyRecord(**_plain(api_key.model_dump()))
                session.add(record)
            return self._api_key(record)

    async def get_api_key(self, key_id: UUID) -> Optional[ApiKey]:
        async with self._session_factory() as session:
            return self._api_key(await session.get(ApiKeyRecord, key_id))

    async def get_api_key_by_public_key(self, public_key: str) -> Optional[ApiKey]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiKeyRecord).where(ApiKeyRecord.public_key == public_key)
            )
            return self._api_key(result.scalars().first())

    async def list_api_keys(self, user_id: Optional[str] = None) -> List[ApiKey]:
        query = select(ApiKeyRecord).order_by(ApiKeyRecord.created_at)
        if user_id is not None:
            query = query.where(ApiKeyRecord.user_id == user_id)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._api_key(record) for record in result.scalars().all()]

    async def _update_key(self, key_id: UUID, values: Dict[str, Any]) -> Optional[ApiKey]:
        statement = (
            update(ApiKeyRecord)
            .where(ApiKeyRecord.id == key_id)
            .values(**values, updated_at=utcnow())
            .returning(ApiKeyRecord)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(statement)
                return self._api_key(result.scalars().first())

    async def update_api_key(self, key_id: UUID, **changes) -> Optional[ApiKey]:
        return await self._update_key(key_id, _plain(changes))

    async def increment_usage(self, key_id: UUID, now: datetime) -> Optional[ApiKey]:
        return await self._update_key(
            key_id,
            {"daily_requests": ApiKeyRecord.daily_requests + 1, "last_used_at": now},
        )

    async def reset_usage(self, key_id: UUID, now: datetime) -> Optional[ApiKey]:
        return await self._update_key(key_id, {"daily_requests": 0, "last_reset_at": now})

    # -- webhooks ----------------------------------------------------------

    async def create_webhook(self, webhook: Webhook) -> Webhook:
        values = webhook.model_dump()
        values["secret"] = self._seal(webhook.secret)
        async with self._session_factory() as session:
            async with session.begin():
                session.add(WebhookRecord(**values))
        return webhook

    async def get_webhook(self, webhook_id: UUID) -> Optional[Webhook]:
        async with self._session_factory() as session:
            return self._webhook(await session.get(WebhookRecord, webhook_id))

    async def list_webhooks(self, api_key_ids: Optional[List[UUID]] = None) -> List[Webhook]:
        query = select(WebhookRecord).order_by(WebhookRecord.created_at)
        if api_key_ids is not None:
            query = query.where(WebhookRecord.api_key_id.in_(api_key_ids))
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._webhook(record) for record in result.scalars().all()]

    async def list_subscribed_webhooks(self, event: str) -> List[Webhook]:
        # Event lists are JSON arrays; filter subscriptions after loading active rows
        async with self._session_factory() as session:
            result = await session.execute(
                select(WebhookRecord).where(WebhookRecord.is_active.is_(True))
            )
            webhooks = [self._webhook(record) for record in result.scalars().all()]
        return [webhook for webhook in webhooks if webhook.subscribes_to(event)]

    async def _update_webhook(self, webhook_id: UUID, values: Dict[str, Any]) -> Optional[Webhook]:
        statement = (
            update(WebhookRecord)
            .where(WebhookRecord.id == webhook_id)
            .values(**values, updated_at=utcnow())
            .returning(WebhookRecord)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(statement)
                return self._webhook(result.scalars().first())

    async def update_webhook(self, webhook_id: UUID, **changes) -> Optional[Webhook]:
        values = _plain(changes)
        if "secret" in values:
            values["secret"] = self._seal(values["secret"])
        return await self._update_webhook(webhook_id, values)

    async def record_webhook_success(self, webhook_id: UUID, now: datetime) -> Optional[Webhook]:
        return await self._update_webhook(webhook_id, {"failure_count": 0, "last_delivered_at": now})

    async def record_webhook_failure(self, webhook_id: UUID, threshold: int) -> Optional[Webhook]:
        # SET expressions see the pre-update row, so both use the old count
        return await self._update_webhook(
            webhook_id,
            {
                "failure_count": WebhookRecord.failure_count + 1,
                "is_active": case(
                    (WebhookRecord.failure_count + 1 >= threshold, False),
                    else_=WebhookRecord.is_active,
                ),
            },
        )

    # -- deliveries and audit ----------------------------------------------

    async def add_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(WebhookDeliveryRecord(**delivery.model_dump()))
        return delivery

    async def list_deliveries(self, webhook_id: UUID, limit: int = 50) -> List[WebhookDelivery]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WebhookDeliveryRecord)
                .where(WebhookDeliveryRecord.webhook_id == webhook_id)
                .order_by(WebhookDeliveryRecord.delivered_at.desc())
                .limit(limit)
            )
            return [WebhookDelivery.model_validate(record) for record in result.scalars().all()]

    async def add_audit_log(self, entry: AuditLog) -> AuditLog:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(ApiAuditLogRecord(**entry.model_dump()))
        return entry

    async def list_audit_logs(self, api_key_ids: List[UUID], limit: int = 100) -> List[AuditLog]:
        if not api_key_ids:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiAuditLogRecord)
                .where(ApiAuditLogRecord.api_key_id.in_(api_key_ids))
                .order_by(ApiAuditLogRecord.created_at.desc())
                .limit(limit)
            )
            return [AuditLog.model_validate(record) for record in result.scalars().all()]

    async def ping(self) -> bool:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def close(self) -> None:
        await close_db()


def build_platform_store(settings) -> PlatformStore:
    """SQL store when DATABASE_URL is configured, in-memory store otherwise"""
    if settings.store_backend == "sql":
        return SqlAlchemyPlatformStore(get_session_factory(settings.database_url))
    return MemoryPlatformStore()
