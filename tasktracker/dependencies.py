"""
Request-scoped dependencies: the cache handle, services, and the
bearer-token / role checks that guard protected routes.

The checks are plain FastAPI dependencies so routes compose them:
``CurrentIdentity`` authenticates, ``require_roles(...)`` additionally
gates on role. Either one short-circuits the request by raising before
the handler runs.
"""

import logging
from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel.ext.asyncio.session import AsyncSession
from typing_extensions import Annotated

from tasktracker.cache.layer import CacheLayer
from tasktracker.core.config import SettingsDep
from tasktracker.core.errors import AuthenticationError, AuthorizationError
from tasktracker.core.security import TokenError, decode_access_token
from tasktracker.database import get_db
from tasktracker.models import User, UserRole
from tasktracker.services.task_service import TaskService
from tasktracker.services.user_service import UserService

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    id: int
    role: UserRole


def get_cache(request: Request) -> CacheLayer:
    return request.app.state.cache


DbDep = Annotated[AsyncSession, Depends(get_db)]
CacheDep = Annotated[CacheLayer, Depends(get_cache)]


def get_task_service(db: DbDep, cache: CacheDep) -> TaskService:
    return TaskService(db, cache)


def get_user_service(db: DbDep, settings: SettingsDep, cache: CacheDep) -> UserService:
    return UserService(db, settings, cache)


TaskServiceDep = Annotated[TaskService, Depends(get_task_service)]
UserServiceDep = Annotated[UserService, Depends(get_user_service)]


async def get_current_identity(
    request: Request,
    settings: SettingsDep,
    db: DbDep,
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> Identity:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Not authenticated")

    try:
        claims = decode_access_token(credentials.credentials, settings)
    except TokenError as e:
        logger.info(f"Rejected token on {request.url.path}: {type(e).__name__}")
        raise AuthenticationError("Invalid or expired token") from e

    # The account may have been deleted or had its role changed since issue.
    user = await db.get(User, claims.user_id)
    if user is None:
        logger.info(f"Rejected token on {request.url.path}: user {claims.user_id} is gone")
        raise AuthenticationError("Invalid or expired token")

    identity = Identity(id=user.id, role=user.role)
    request.state.identity = identity
    return identity


CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]


def require_roles(*roles: UserRole) -> Callable:
    """Build a dependency that only lets the given roles through."""
    allowed = frozenset(roles)

    async def check_role(identity: CurrentIdentity) -> Identity:
        if identity.role not in allowed:
            raise AuthorizationError("Forbidden")
        return identity

    return check_role


AdminIdentity = Annotated[Identity, Depends(require_roles(UserRole.ADMIN))]
