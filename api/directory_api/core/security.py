import hashlib
import hmac
from typing import Any

import httpx
from fastapi import Depends, Header, status

from directory_api.core.auth import Principal, PrincipalType
from directory_api.core.config import Settings, get_settings
from directory_api.core.errors import ApiError, ErrorCode, unavailable
from directory_api.services.repository import RepositoryUnavailableError, get_repository

USER_SCOPES = {"catalog:read", "claims:write", "messages:write"}
ROLE_SCOPES: dict[str, set[str]] = {
    "user": USER_SCOPES,
    "agency_owner": USER_SCOPES | {"agency:write"},
    "admin": USER_SCOPES | {"agency:write", "admin:write"},
}


def _unauthorized(message: str) -> ApiError:
    return ApiError(status.HTTP_401_UNAUTHORIZED, ErrorCode.UNAUTHORIZED, message)


async def get_machine_principal(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    x_module_id: str | None = Header(default=None, alias="X-Module-Id"),
) -> Principal:
    if not x_api_key or not x_module_id:
        raise _unauthorized(f"machine auth requires {settings.api_key_header} and X-Module-Id")

    try:
        credentials = await repository.get_machine_credentials(x_module_id)
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc

    if not credentials:
        raise _unauthorized("invalid module credentials")

    key_hash = hashlib.sha256(x_api_key.encode("utf-8")).hexdigest()
    matched = next((record for record in credentials if hmac.compare_digest(record.key_hash, key_hash)), None)
    if not matched:
        raise _unauthorized("invalid module credentials")

    return Principal(
        principal_type=PrincipalType.MACHINE,
        subject=matched.module_id,
        scopes=set(matched.scopes),
        actor_id=matched.module_db_id,
    )


async def get_human_principal(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise _unauthorized("Unauthorized: authentication required")

    token = authorization.split(" ", maxsplit=1)[1].strip()
    if not token:
        raise _unauthorized("Unauthorized: empty bearer token")

    if not settings.supabase_url or not settings.supabase_anon_key:
        raise unavailable("Supabase auth is not configured")

    user = await _fetch_supabase_user(
        supabase_url=settings.supabase_url,
        supabase_anon_key=settings.supabase_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise _unauthorized("Unauthorized: invalid bearer token")

    try:
        profile = await repository.get_profile(user_id)
    except RepositoryUnavailableError as exc:
        raise unavailable(str(exc)) from exc

    # Role lives on the profile row, not in the auth token claims.
    role = profile.get("role") if profile else None
    email = (profile or {}).get("email") or user.get("email")

    return Principal(
        principal_type=PrincipalType.HUMAN,
        subject=user_id,
        role=role,
        scopes=set(ROLE_SCOPES.get(role or "user", USER_SCOPES)),
        actor_id=user_id,
        email=email if isinstance(email, str) else None,
    )


async def get_admin_principal(principal: Principal = Depends(get_human_principal)) -> Principal:
    try:
        principal.require_scopes({"admin:write"})
    except PermissionError as exc:
        raise ApiError(
            status.HTTP_403_FORBIDDEN,
            ErrorCode.UNAUTHORIZED,
            "Forbidden: Admin access required",
        ) from exc
    return principal


async def _fetch_supabase_user(
    *,
    supabase_url: str,
    supabase_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": supabase_anon_key,
    }
    url = f"{supabase_url.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise unavailable("Supabase auth verification unavailable") from exc

    if response.status_code in {401, 403}:
        raise _unauthorized("Unauthorized: invalid bearer token")
    if response.status_code != 200:
        raise unavailable("Supabase auth verification failed")

    return response.json()
