# medqbank/api/v1/routes/auth.py
from fastapi import APIRouter, Depends, status, Request
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession
from slowapi import Limiter
from slowapi.util import get_remote_address
import logging

from medqbank.core.config import settings
from medqbank.core.database import db_helper
from medqbank.core.exceptions import AuthenticationError, NotFoundError, RateLimitError
from medqbank.core.schemas.auth import (
    UserCreate,
    UserResponse,
    Token,
    RefreshTokenRequest,
    ProfileUpdate,
    PasswordChange,
)
from medqbank.core.utils import get_current_user
from medqbank.models.content import Semester
from medqbank.models.user import User
from medqbank.repositories.user_repository import UserRepository
from medqbank.services.auth_service import AuthService

logger = logging.getLogger(__name__)

# Rate limiter (можно использовать Redis в продакшене)
limiter = Limiter(key_func=get_remote_address, enabled=settings.security.RATE_LIMIT_ENABLED)

router = APIRouter(prefix="/auth", tags=["authentication"])


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def register_user(
    request: Request,
    user_create: UserCreate,
    session: AsyncSession = Depends(db_helper.session_getter)
):
    """Регистрация нового студента"""
    client_ip = _client_ip(request)
    logger.info(f"Registration attempt from IP: {client_ip} for email: {user_create.email}")

    auth_service = AuthService(UserRepository(session))
    user, _ = await auth_service.register_user(user_create, client_ip)

    logger.info(f"Successful registration for user ID: {user.id}, email: {user.email}")
    return user


@router.post("/login", response_model=Token)
@limiter.limit("10/minute")
async def login_for_access_token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    session: AsyncSession = Depends(db_helper.session_getter)
):
    """Логин пользователя и получение токенов"""
    client_ip = _client_ip(request)
    auth_service = AuthService(UserRepository(session))
    try:
        _, token = await auth_service.authenticate_user(form_data.username, form_data.password, client_ip)
    except RateLimitError:
        logger.warning(f"Rate limit exceeded for login from IP: {client_ip}")
        raise
    except AuthenticationError:
        logger.warning(f"Authentication failed for email: {form_data.username} from IP: {client_ip}")
        raise

    logger.info(f"Successful login for email: {form_data.username}")
    return token


@router.post("/refresh", response_model=Token)
@limiter.limit("20/hour")
async def refresh_access_token(
    request: Request,
    refresh_request: RefreshTokenRequest,
    session: AsyncSession = Depends(db_helper.session_getter)
):
    """Обновление access token с помощью refresh token"""
    auth_service = AuthService(UserRepository(session))
    return await auth_service.refresh_tokens(refresh_request.refresh_token)


@router.get("/me", response_model=UserResponse)
async def read_me(current_user: User = Depends(get_current_user)):
    """Информация о текущем пользователе"""
    return current_user


@router.patch("/me", response_model=UserResponse)
async def update_me(
    payload: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter)
):
    """Обновление профиля. Уровень меняется только через заявку."""
    fields = payload.model_dump(exclude_unset=True)
    if fields.get("semester_id") is not None:
        semester = await session.get(Semester, fields["semester_id"])
        if semester is None or semester.niveau_id != current_user.niveau_id:
            raise NotFoundError("Semester not found for your level")
    return await UserRepository(session).update_fields(current_user, **fields)


@router.post("/me/password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    payload: PasswordChange,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(db_helper.session_getter)
):
    await AuthService(UserRepository(session)).change_password(
        current_user, payload.current_password, payload.new_password
    )
