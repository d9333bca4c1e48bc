"""
FastAPI dependencies for API-key authenticated platform endpoints
"""

from typing import Annotated, Callable, Optional

from fastapi import Depends, Header, Request, Response

from ..models.platform import AdmissionResult, ApiKey
from ..services.admission import ensure_permission
from .services import Admission, Store


def _rate_limit_headers(response: Response, result: AdmissionResult) -> None:
    decision = result.decision
    response.headers["X-RateLimit-Limit"] = str(decision.limit)
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    response.headers["X-RateLimit-Reset"] = decision.reset_at.isoformat()


def _api_key_dependency(require_secret: bool) -> Callable:
    async def dependency(
        request: Request,
        response: Response,
        admission: Admission,
        store: Store,
        x_api_key: Annotated[Optional[str], Header(alias="X-API-Key")] = None,
        x_api_secret: Annotated[Optional[str], Header(alias="X-API-Secret")] = None,
    ) -> ApiKey:
        result = await admission.admit(x_api_key, x_api_secret, require_secret=require_secret)

        # Picked up by ApiAuditMiddleware when the response completes
        request.state.api_key_id = result.api_key.id
        request.state.platform_store = store

        _rate_limit_headers(response, result)
        return result.api_key

    return dependency


get_api_key = _api_key_dependency(require_secret=False)
get_api_key_with_secret = _api_key_dependency(require_secret=True)


def require_permission(*permissions: str, require_secret: bool = False) -> Callable:
    """
    Dependency factory: admit the API key, then check it holds one of ``permissions``

    Args:
        permissions: Accepted permissions; ``admin`` always satisfies the check
        require_secret: Reject calls that do not present ``X-API-Secret``
    """
    base = get_api_key_with_secret if require_secret else get_api_key

    async def dependency(api_key: Annotated[ApiKey, Depends(base)]) -> ApiKey:
        ensure_permission(api_key, *permissions)
        return api_key

    return dependency


# Type aliases for easier use
CurrentApiKey = Annotated[ApiKey, Depends(get_api_key)]
ReadKey = Annotated[ApiKey, Depends(require_permission("read"))]
WriteKey = Annotated[ApiKey, Depends(require_permission("write"))]
SignedWriteKey = Annotated[ApiKey, Depends(require_permission("write", require_secret=True))]
AdminKey = Annotated[ApiKey, Depends(require_permission("admin"))]
