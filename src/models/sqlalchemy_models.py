"""
SQLAlchemy models for the developer platform tables
"""

from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    Boolean,
    ForeignKey,
    JSON,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from datetime import datetime, timezone
import uuid

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApiKeyRecord(Base):
    """API key SQLAlchemy model"""

    __tablename__ = "api_keys"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    public_key = Column(String, unique=True, nullable=False)
    secret_key_hash = Column(String, nullable=False)
    tier = Column(String, nullable=False, default="free")
    is_active = Column(Boolean, nullable=False, default=True)
    is_sandbox = Column(Boolean, nullable=False, default=True)
    rate_limit = Column(Integer, nullable=False, default=100)
    daily_requests = Column(Integer, nullable=False, default=0)
    last_reset_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    last_used_at = Column(DateTime(timezone=True))
    permissions = Column(JSON, nullable=False, default=list)
    expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class WebhookRecord(Base):
    """Webhook subscription SQLAlchemy model"""

    __tablename__ = "webhooks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    api_key_id = Column(UUID(as_uuid=True), ForeignKey("api_keys.id"), nullable=False, index=True)
    url = Column(String, nullable=False)
    events = Column(JSON, nullable=False)
    secret = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    failure_count = Column(Integer, nullable=False, default=0)
    last_delivered_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class WebhookDeliveryRecord(Base):
    """One webhook delivery attempt"""

    __tablename__ = "webhook_deliveries"
    __table_args__ = (Index("ix_webhook_deliveries_webhook_time", "webhook_id", "delivered_at"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    webhook_id = Column(UUID(as_uuid=True), ForeignKey("webhooks.id"), nullable=False)
    delivery_id = Column(String, nullable=False)
    event = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    response_status = Column(Integer, nullable=False)
    response_body = Column(Text)
    success = Column(Boolean, nullable=False)
    attempts = Column(Integer, nullable=False)
    delivered_at = Column(DateTime(timezone=True), default=_utcnow)


class ApiAuditLogRecord(Base):
    """Per-request audit row for API-key authenticated calls"""

    __tablename__ = "api_audit_logs"
    __table_args__ = (Index("ix_api_audit_logs_key_time", "api_key_id", "created_at"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    api_key_id = Column(UUID(as_uuid=True), ForeignKey("api_keys.id"), nullable=False)
    method = Column(String, nullable=False)
    path = Column(String, nullable=False)
    status_code = Column(Integer, nullable=False)
    response_time_ms = Column(Integer, nullable=False)
    ip_address = Column(String)
    user_agent = Column(String)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
