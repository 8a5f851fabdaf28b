"""Caller verification for backup operations.

Every service operation goes through one guard: the bearer token must
resolve to a user (else 401) and that user must be an admin (else 403).
The check runs before any datastore or storage access.

Usage:
    from crm_backup.auth import SupabaseAuthorizer, require_admin

    authorizer = SupabaseAuthorizer(url, anon_key)
    actor = await require_admin(authorizer, token)
"""

import functools
import logging
from typing import Any, Awaitable, Callable, Protocol, TypeVar

from pydantic import BaseModel
from supabase import acreate_client

from crm_backup.errors import AuthError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Actor(BaseModel):
    """A verified caller."""

    user_id: str
    email: str | None = None

    @property
    def identity(self) -> str:
        """Identity recorded on jobs and bundles."""
        return self.email or self.user_id


class Authorizer(Protocol):
    """Resolves bearer tokens to users and checks admin privilege."""

    async def authenticate(self, token: str) -> Actor | None:
        """Return the token's user, or ``None`` if the token is invalid."""
        ...

    async def is_admin(self, token: str) -> bool:
        """Whether the token's user holds the admin privilege."""
        ...


async def require_admin(authorizer: Authorizer, token: str | None) -> Actor:
    """Verify the caller, then return it.

    Raises:
        AuthError: status 401 when the token is missing or invalid,
            403 when the user is not an admin.
    """
    if not token or not token.strip():
        raise AuthError("Unauthorized", status=401)

    actor = await authorizer.authenticate(token)
    if actor is None:
        logger.warning("Rejected backup request: invalid token")
        raise AuthError("Unauthorized", status=401)

    if not await authorizer.is_admin(token):
        logger.warning(f"Rejected backup request from non-admin {actor.identity}")
        raise AuthError("Forbidden", status=403)

    return actor


def admin_required(
    method: Callable[..., Awaitable[T]],
) -> Callable[..., Awaitable[T]]:
    """Decorate a service method ``(self, actor, ...)`` to take a token instead.

    The wrapped method is called as ``method(self, token, ...)``; the token
    is verified with ``self.authorizer`` and replaced by the ``Actor``.
    """

    @functools.wraps(method)
    async def wrapper(self: Any, token: str | None, *args: Any, **kwargs: Any) -> T:
        actor = await require_admin(self.authorizer, token)
        return await method(self, actor, *args, **kwargs)

    return wrapper


class SupabaseAuthorizer:
    """``Authorizer`` backed by Supabase Auth and the ``is_admin`` RPC.

    A short-lived client is created per check with the anon key so the RPC
    runs as the calling user, not with service-role privileges.

    Args:
        url: Supabase project URL.
        anon_key: Supabase anon (public) key.
    """

    def __init__(self, url: str, anon_key: str) -> None:
        self._url = url
        self._anon_key = anon_key

    async def authenticate(self, token: str) -> Actor | None:
        client = await acreate_client(self._url, self._anon_key)
        try:
            response = await client.auth.get_user(token)
        except Exception as e:
            logger.debug(f"Token rejected by auth server: {e}")
            return None
        finally:
            await client.aclose()

        user = response.user if response else None
        if user is None:
            return None
        return Actor(user_id=str(user.id), email=user.email)

    async def is_admin(self, token: str) -> bool:
        client = await acreate_client(self._url, self._anon_key)
        try:
            client.postgrest.auth(token)
            result = await client.rpc("is_admin").execute()
        finally:
            await client.aclose()
        return bool(result.data)
