"""
API-key admission control: credential checks, daily quota and permission scopes
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from ..database.store import PlatformStore
from ..models.errors import (
    UPGRADE_HINT,
    ApiKeyRequiredError,
    APIError,
    InvalidApiKeyError,
    InvalidSecretError,
    KeyDeactivatedError,
    KeyExpiredError,
    PermissionDeniedError,
    QuotaExceededError,
)
from ..models.platform import AdmissionResult, ApiKey, Permission, RateLimitDecision, Tier, utcnow
from ..utils.logger import log, mask_key
from ..utils.metrics import record_admission
from .api_key_service import verify_secret

QUOTA_WINDOW = timedelta(hours=24)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def has_permission(api_key: ApiKey, required: Iterable[str]) -> bool:
    """True if the key holds any of ``required`` or the blanket admin permission"""
    if Permission.ADMIN.value in api_key.permissions:
        return True
    return any(permission in api_key.permissions for permission in required)


def ensure_permission(api_key: ApiKey, *required: str) -> None:
    if not has_permission(api_key, required):
        upgrade = None if api_key.tier == Tier.ENTERPRISE else UPGRADE_HINT
        raise PermissionDeniedError(tuple(required), api_key.tier.value, upgrade)


class AdmissionService:
    """
    Admit or reject one API call

    Checks run in a fixed order and stop at the first failure: key present,
    key known, key active, key not expired, secret matches (when presented
    or required), daily quota available. An admitted call has already been
    counted against the quota when ``admit`` returns.
    """

    def __init__(self, store: PlatformStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def admit(
        self,
        public_key: Optional[str],
        secret: Optional[str] = None,
        require_secret: bool = False,
    ) -> AdmissionResult:
        try:
            result = await self._admit(public_key, secret, require_secret)
        except APIError as e:
            record_admission(e.code.value.lower())
            log.warning(
                "API request rejected",
                extra={
                    "event_type": "admission_rejected",
                    "code": e.code.value,
                    "public_key": mask_key(public_key),
                },
            )
            raise

        record_admission("allowed")
        return result

    async def _admit(
        self, public_key: Optional[str], secret: Optional[str], require_secret: bool
    ) -> AdmissionResult:
        if not public_key:
            raise ApiKeyRequiredError()

        api_key = await self.store.get_api_key_by_public_key(public_key)
        if api_key is None:
            raise InvalidApiKeyError()
        if not api_key.is_active:
            raise KeyDeactivatedError()

        now = self.clock()
        if api_key.expires_at and now > _aware(api_key.expires_at):
            raise KeyExpiredError()

        if secret or require_secret:
            if not secret or not verify_secret(secret, api_key.secret_key_hash):
                raise InvalidSecretError()

        decision = await self.check_rate_limit(api_key, now)
        if not decision.allowed:
            upgrade = None if api_key.tier == Tier.ENTERPRISE else UPGRADE_HINT
            raise QuotaExceededError(0, decision.reset_at, api_key.tier.value, upgrade)

        # Quota is consumed before the protected call runs
        counted = await self.store.increment_usage(api_key.id, now)
        return AdmissionResult(api_key=counted or api_key, decision=decision)

    async def check_rate_limit(self, api_key: ApiKey, now: Optional[datetime] = None) -> RateLimitDecision:
        """
        Rolling 24h quota check

        Once 24h have passed since the last reset the counter is zeroed and the
        call is allowed; otherwise the call is allowed while
        ``daily_requests < daily_limit``.
        """
        now = now or self.clock()
        limit = api_key.daily_limit
        last_reset = _aware(api_key.last_reset_at)

        if now - last_reset >= QUOTA_WINDOW:
            await self.store.reset_usage(api_key.id, now)
            return RateLimitDecision(
                allowed=True, remaining=limit - 1, reset_at=now + QUOTA_WINDOW, limit=limit
            )

        return RateLimitDecision(
            allowed=api_key.daily_requests < limit,
            remaining=max(0, limit - api_key.daily_requests),
            reset_at=last_reset + QUOTA_WINDOW,
            limit=limit,
        )
