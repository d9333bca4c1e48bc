"""
API key issuing and management for the developer portal
"""

import os
import secrets
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from argon2 import PasswordHasher
from argon2.exceptions import HashingError, InvalidHashError, VerifyMismatchError

from ..config.settings import get_settings
from ..database.store import PlatformStore
from ..models.errors import NotFoundError
from ..models.platform import TIER_LIMITS, ApiKey, IssuedApiKey, Tier
from ..utils.logger import log, mask_key

# Secret hashing configuration
API_SECRET_PEPPER = os.getenv("API_SECRET_PEPPER", "")
ph = PasswordHasher()


class ApiKeyError(Exception):
    """Key hashing failures"""

    pass


def hash_secret(secret: str) -> str:
    """Hash an API secret using Argon2id with optional pepper"""
    try:
        return ph.hash(secret + API_SECRET_PEPPER)
    except HashingError as e:
        raise ApiKeyError(f"Secret hashing failed: {str(e)}")


def verify_secret(secret: str, hashed: str) -> bool:
    """Verify an API secret against its stored hash"""
    try:
        ph.verify(hashed, secret + API_SECRET_PEPPER)
        return True
    except (VerifyMismatchError, InvalidHashError):
        return False


def generate_key_pair(prefix: Optional[str] = None) -> Tuple[str, str]:
    """
    Generate a public/secret key pair

    Returns:
        (``<prefix>_pk_<48 hex>``, ``<prefix>_sk_<64 hex>``)
    """
    prefix = prefix or get_settings().key_prefix
    return f"{prefix}_pk_{secrets.token_hex(24)}", f"{prefix}_sk_{secrets.token_hex(32)}"


class ApiKeyService:
    """Create, list, rotate and deactivate a developer's API keys"""

    def __init__(self, store: PlatformStore):
        self.store = store

    def _issued(self, api_key: ApiKey, secret_key: str) -> IssuedApiKey:
        return IssuedApiKey(**api_key.model_dump(), secret_key=secret_key)

    async def create_key(
        self,
        user_id: str,
        name: str,
        tier: Tier = Tier.FREE,
        is_sandbox: bool = True,
        expires_at: Optional[datetime] = None,
    ) -> IssuedApiKey:
        """
        Issue a new key. The secret is returned here and never again.

        Args:
            user_id: Owning developer
            name: Display name
            tier: Pricing tier; sets rate limit and permissions
            is_sandbox: Sandbox keys are flagged on every request
            expires_at: Optional hard expiry

        Returns:
            IssuedApiKey including ``secret_key``
        """
        limits = TIER_LIMITS[tier]
        public_key, secret_key = generate_key_pair()
        api_key = await self.store.create_api_key(
            ApiKey(
                user_id=user_id,
                name=name,
                public_key=public_key,
                secret_key_hash=hash_secret(secret_key),
                tier=tier,
                is_sandbox=is_sandbox,
                rate_limit=limits.rate_limit,
                permissions=list(limits.permissions),
                expires_at=expires_at,
            )
        )

        log.info(
            "API key created",
            extra={
                "event_type": "api_key_created",
                "user_id": user_id,
                "api_key_id": str(api_key.id),
                "public_key": mask_key(public_key),
                "tier": tier.value,
            },
        )
        return self._issued(api_key, secret_key)

    async def list_keys(self, user_id: str) -> List[ApiKey]:
        return await self.store.list_api_keys(user_id)

    async def get_owned_key(self, user_id: str, key_id: UUID) -> ApiKey:
        api_key = await self.store.get_api_key(key_id)
        if api_key is None or api_key.user_id != user_id:
            raise NotFoundError("API key", key_id)
        return api_key

    async def rotate_key(self, user_id: str, key_id: UUID) -> IssuedApiKey:
        """Replace both halves of the key pair in one store update"""
        await self.get_owned_key(user_id, key_id)
        public_key, secret_key = generate_key_pair()
        rotated = await self.store.update_api_key(
            key_id, public_key=public_key, secret_key_hash=hash_secret(secret_key)
        )
        if rotated is None:
            raise NotFoundError("API key", key_id)

        log.info(
            "API key rotated",
            extra={
                "event_type": "api_key_rotated",
                "user_id": user_id,
                "api_key_id": str(key_id),
                "public_key": mask_key(public_key),
            },
        )
        return self._issued(rotated, secret_key)

    async def deactivate_key(self, user_id: str, key_id: UUID) -> ApiKey:
        await self.get_owned_key(user_id, key_id)
        api_key = await self.store.update_api_key(key_id, is_active=False)
        if api_key is None:
            raise NotFoundError("API key", key_id)

        log.info(
            "API key deactivated",
            extra={"event_type": "api_key_deactivated", "user_id": user_id, "api_key_id": str(key_id)},
        )
        return api_key

