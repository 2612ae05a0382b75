# medqbank/core/utils.py
from urllib.parse import quote
from fastapi import Depends, Response
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from medqbank.core.database import db_helper
from medqbank.core.exceptions import AuthenticationError, AuthorizationError
from medqbank.repositories.user_repository import UserRepository
from medqbank.services.auth_service import AuthService
from medqbank.models.user import User, UserRole
import logging

logger = logging.getLogger(__name__)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    session: AsyncSession = Depends(db_helper.session_getter)
) -> User:
    """Зависимость для получения текущего пользователя из токена"""
    auth_service = AuthService(UserRepository(session))
    try:
        return await auth_service.get_current_user(token)
    except AuthenticationError as e:
        logger.warning(f"Authentication failed: {e.detail}")
        raise AuthenticationError("Could not validate credentials")


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != UserRole.ADMIN.value:
        raise AuthorizationError("Admin access required")
    return current_user


async def require_maintainer_or_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role not in (UserRole.ADMIN.value, UserRole.MAINTAINER.value):
        raise AuthorizationError("Maintainer or admin access required")
    return current_user


def file_response(content: bytes, filename: str, media_type: str) -> Response:
    """Ответ-вложение; имя файла кодируется по RFC 5987 (кириллица, accents)"""
    ascii_name = filename.encode("ascii", "ignore").decode() or "download"
    disposition = f'attachment; filename="{ascii_name}"; filename*=UTF-8\'\'{quote(filename)}'
    return Response(content=content, media_type=media_type, headers={"Content-Disposition": disposition})
