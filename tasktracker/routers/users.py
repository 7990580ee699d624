from fastapi import APIRouter, Query, status

from tasktracker.core.errors import NotFoundError
from tasktracker.dependencies import AdminIdentity, CurrentIdentity, UserServiceDep
from tasktracker.models import (
    ApiResponse,
    AuthPayload,
    Deleted,
    RoleUpdate,
    UserCreate,
    UserLogin,
    UserPublic,
    UserUpdate,
)

router = APIRouter(prefix="/users", tags=["users"])

USER_NOT_FOUND = "User not found"


@router.post(
    "/register",
    response_model=ApiResponse[AuthPayload],
    status_code=status.HTTP_201_CREATED,
)
async def register(user_data: UserCreate, service: UserServiceDep):
    """Create an account and return a bearer token for it"""
    user, token = await service.register(user_data)
    return {"data": {"token": token, "user": user}}


@router.post("/login", response_model=ApiResponse[AuthPayload])
async def login(credentials: UserLogin, service: UserServiceDep):
    user, token = await service.authenticate(credentials.email, credentials.password)
    return {"data": {"token": token, "user": user}}


@router.get("/me", response_model=ApiResponse[UserPublic])
async def get_me(identity: CurrentIdentity, service: UserServiceDep):
    user = await service.get(identity.id)
    if not user:
        raise NotFoundError(USER_NOT_FOUND)
    return {"data": user}


@router.put("/me", response_model=ApiResponse[UserPublic])
async def update_me(
    user_data: UserUpdate, identity: CurrentIdentity, service: UserServiceDep
):
    """Update own name, email or password. Role changes go through the admin API."""
    user = await service.update_self(identity.id, user_data)
    if not user:
        raise NotFoundError(USER_NOT_FOUND)
    return {"data": user}


@router.delete("/me", response_model=ApiResponse[Deleted])
async def delete_me(identity: CurrentIdentity, service: UserServiceDep):
    """Delete own account and every task it owns"""
    if not await service.delete(identity.id):
        raise NotFoundError(USER_NOT_FOUND)
    return {"data": {"id": identity.id}}


@router.get("/admin/all", response_model=ApiResponse[list[UserPublic]])
async def admin_get_users(
    admin: AdminIdentity,
    service: UserServiceDep,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=100),
):
    return {"data": await service.list_users(skip, limit)}


@router.get("/admin/{user_id}", response_model=ApiResponse[UserPublic])
async def admin_get_user(user_id: int, admin: AdminIdentity, service: UserServiceDep):
    user = await service.get(user_id)
    if not user:
        raise NotFoundError(USER_NOT_FOUND)
    return {"data": user}


@router.patch("/admin/{user_id}/role", response_model=ApiResponse[UserPublic])
async def admin_update_role(
    user_id: int,
    role_data: RoleUpdate,
    admin: AdminIdentity,
    service: UserServiceDep,
):
    user = await service.update_role(user_id, role_data.role)
    if not user:
        raise NotFoundError(USER_NOT_FOUND)
    return {"data": user}


@router.delete("/admin/{user_id}", response_model=ApiResponse[Deleted])
async def admin_delete_user(user_id: int, admin: AdminIdentity, service: UserServiceDep):
    if not await service.delete(user_id):
        raise NotFoundError(USER_NOT_FOUND)
    return {"data": {"id": user_id}}
