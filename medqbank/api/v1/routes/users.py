# medqbank/api/v1/routes/users.py
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from medqbank.core.database import db_helper
from medqbank.core.exceptions import BadRequestError, NotFoundError
from medqbank.core.schemas.auth import (
    UserResponse, UserListResponse, RoleUpdate, StatusUpdate, SubscriptionUpdate,
)
from medqbank.core.utils import require_admin
from medqbank.models.user import User
from medqbank.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/users", tags=["admin-users"])


async def _get_user(repo: UserRepository, user_id: int) -> User:
    user = await repo.get_by_id(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


@router.get("", response_model=UserListResponse)
async def list_users(
    search: Optional[str] = None,
    role: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    items, total = await UserRepository(session).list_users(
        search=search, role=role, offset=(page - 1) * page_size, limit=page_size
    )
    return UserListResponse(items=items, total=total)


@router.patch("/{user_id}/role", response_model=UserResponse)
async def change_role(
    user_id: int,
    payload: RoleUpdate,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    repo = UserRepository(session)
    user = await _get_user(repo, user_id)
    if user.id == admin.id and payload.role != "admin":
        raise BadRequestError("You cannot remove your own admin role")
    logger.info(f"Admin {admin.id} changed role of user {user.id}: {user.role} -> {payload.role}")
    return await repo.update_fields(user, role=payload.role)


@router.patch("/{user_id}/status", response_model=UserResponse)
async def change_status(
    user_id: int,
    payload: StatusUpdate,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    repo = UserRepository(session)
    user = await _get_user(repo, user_id)
    if user.id == admin.id:
        raise BadRequestError("You cannot change your own status")
    return await repo.update_fields(user, status=payload.status)


@router.patch("/{user_id}/subscription", response_model=UserResponse)
async def change_subscription(
    user_id: int,
    payload: SubscriptionUpdate,
    admin: User = Depends(require_admin),
    session: AsyncSession = Depends(db_helper.session_getter),
):
    """Ручная активация/снятие подписки"""
    repo = UserRepository(session)
    user = await _get_user(repo, user_id)
    return await repo.update_fields(
        user,
        has_active_subscription=payload.active,
        subscription_expires_at=payload.expires_at if payload.active else None,
    )
