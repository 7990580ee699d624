import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from tasktracker.cache.layer import CacheLayer
from tasktracker.core.config import Settings
from tasktracker.core.errors import AuthenticationError, AuthorizationError, ConflictError
from tasktracker.core.security import (
    create_access_token,
    dummy_password_hash,
    hash_password,
    verify_password,
)
from tasktracker.models import User, UserCreate, UserRole, UserUpdate
from tasktracker.services.task_service import TaskService, task_list_key

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
EMAIL_TAKEN = "Email is already registered"


class UserService:
    def __init__(self, db: AsyncSession, settings: Settings, cache: CacheLayer):
        self.db = db
        self.settings = settings
        self.cache = cache

    def issue_token(self, user: User) -> str:
        return create_access_token(user.id, user.role, self.settings)

    async def get(self, user_id: int) -> User | None:
        return await self.db.get(User, user_id)

    async def get_by_email(self, email: str) -> User | None:
        result = await self.db.exec(select(User).where(User.email == email.lower()))
        return result.first()

    async def _commit_unique(self):
        try:
            await self.db.commit()
        except IntegrityError as e:
            # Lost a race against a concurrent registration with the same email.
            await self.db.rollback()
            raise ConflictError(EMAIL_TAKEN) from e

    async def register(self, data: UserCreate) -> tuple[User, str]:
        role = UserRole.USER
        if data.role is not None and data.role != UserRole.USER:
            if not self.settings.allow_role_on_register:
                raise AuthorizationError("Role cannot be set at registration")
            role = data.role

        if await self.get_by_email(data.email):
            raise ConflictError(EMAIL_TAKEN)

        user = User(
            name=data.name,
            email=data.email,
            hashed_password=hash_password(data.password, rounds=self.settings.bcrypt_rounds),
            role=role,
        )
        self.db.add(user)
        await self._commit_unique()
        await self.db.refresh(user)
        logger.info(f"User {user.id} registered with role {user.role.value}")
        return user, self.issue_token(user)

    async def authenticate(self, email: str, password: str) -> tuple[User, str]:
        """
        Check credentials and issue a token.

        Unknown email and wrong password raise the same error, and both
        paths pay for one bcrypt comparison.
        """
        user = await self.get_by_email(email)
        if user is None:
            verify_password(password, dummy_password_hash(self.settings.bcrypt_rounds))
            logger.info("Login failed: unknown email")
            raise AuthenticationError(INVALID_CREDENTIALS)

        if not verify_password(password, user.hashed_password):
            logger.info(f"Login failed for user {user.id}: bad password")
            raise AuthenticationError(INVALID_CREDENTIALS)

        return user, self.issue_token(user)

    async def update_self(self, user_id: int, data: UserUpdate) -> User | None:
        user = await self.get(user_id)
        if not user:
            return None

        update_data = data.model_dump(exclude_unset=True, exclude_none=True)

        new_email = update_data.get("email")
        if new_email and new_email != user.email:
            if await self.get_by_email(new_email):
                raise ConflictError(EMAIL_TAKEN)

        password = update_data.pop("password", None)
        if password is not None:
            update_data["hashed_password"] = hash_password(
                password, rounds=self.settings.bcrypt_rounds
            )

        user.sqlmodel_update(update_data)
        user.updated_at = datetime.now(timezone.utc)
        self.db.add(user)
        await self._commit_unique()
        await self.db.refresh(user)
        return user

    async def delete(self, user_id: int) -> bool:
        """Delete a user together with all of their tasks."""
        user = await self.get(user_id)
        if not user:
            return False

        await TaskService(self.db, self.cache).delete_all_for_owner(user_id)
        await self.db.delete(user)
        await self.db.commit()
        await self.cache.delete(task_list_key(user_id))
        logger.info(f"User {user_id} deleted")
        return True

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    async def list_users(self, skip: int, limit: int):
        query = select(User).offset(skip).limit(limit).order_by(User.id)
        result = await self.db.exec(query)
        return result.all()

    async def update_role(self, user_id: int, role: UserRole) -> User | None:
        user = await self.get(user_id)
        if not user:
            return None
        user.role = role
        user.updated_at = datetime.now(timezone.utc)
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        logger.info(f"User {user_id} role set to {role.value}")
        return user
