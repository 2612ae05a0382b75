# medqbank/services/auth_service.py
from typing import Tuple, Dict
from datetime import datetime, timedelta, timezone
import asyncio
import time
from medqbank.core.security import (
    get_password_hash,
    verify_password,
    create_access_token,
    create_refresh_token,
    decode_token
)
from medqbank.repositories.user_repository import UserRepository
from medqbank.core.schemas.auth import UserCreate, Token
from medqbank.core.config import settings
from medqbank.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    RateLimitError
)
from medqbank.models.user import User, UserStatus


class RateLimiter:
    """Простой rate limiter для защиты от брутфорса"""
    def __init__(self):
        self.attempts: Dict[str, list] = {}  # {ip_or_email: [timestamps]}
        self.max_attempts = 5
        self.block_duration = timedelta(minutes=15)
        self.window = timedelta(minutes=5)

    async def check_rate_limit(self, identifier: str) -> None:
        """Проверка лимита запросов"""
        now = datetime.now(timezone.utc)

        if identifier in self.attempts:
            self.attempts[identifier] = [
                ts for ts in self.attempts[identifier]
                if ts > now - self.window
            ]
            attempts = self.attempts[identifier]
            if len(attempts) >= self.max_attempts:
                first_attempt = min(attempts)
                if now - first_attempt < self.block_duration:
                    remaining = (first_attempt + self.block_duration - now).seconds
                    raise RateLimitError(
                        f"Too many attempts. Try again in {remaining} seconds"
                    )

        self.attempts.setdefault(identifier, []).append(now)

    async def clear_attempts(self, identifier: str) -> None:
        """Очистка попыток после успешной аутентификации"""
        self.attempts.pop(identifier, None)


# Один limiter на процесс: экземпляр AuthService создаётся на каждый запрос
rate_limiter = RateLimiter()


class AuthService:
    def __init__(self, user_repository: UserRepository):
        self.user_repository = user_repository
        self.rate_limiter = rate_limiter

    async def register_user(self, user_create: UserCreate, client_ip: str) -> Tuple[User, Token]:
        """Регистрация нового студента"""
        await self.rate_limiter.check_rate_limit(f"register_{client_ip}")

        existing_user = await self.user_repository.get_by_email(user_create.email)
        if existing_user:
            await asyncio.sleep(settings.security.AUTH_MIN_DELAY)
            raise ConflictError("User with this email already exists")

        password_hash = get_password_hash(user_create.password)
        user = await self.user_repository.create(user_create, password_hash)
        token = self._generate_tokens(user.id)

        await self.rate_limiter.clear_attempts(f"register_{client_ip}")
        return user, token

    async def authenticate_user(self, email: str, password: str, client_ip: str) -> Tuple[User, Token]:
        """Аутентификация пользователя с защитой от брутфорса"""
        email = email.lower()

        await self.rate_limiter.check_rate_limit(f"login_email_{email}")
        await self.rate_limiter.check_rate_limit(f"login_ip_{client_ip}")

        user = await self.user_repository.get_by_email(email)
        if not user:
            await asyncio.sleep(settings.security.AUTH_FAILURE_DELAY)
            raise AuthenticationError("Invalid email or password")

        # Защита от тайминг-атак: вход не быстрее AUTH_MIN_DELAY
        start_time = time.monotonic()
        is_valid = verify_password(password, user.password_hash)
        elapsed = time.monotonic() - start_time
        if elapsed < settings.security.AUTH_MIN_DELAY:
            await asyncio.sleep(settings.security.AUTH_MIN_DELAY - elapsed)

        if not is_valid:
            await asyncio.sleep(settings.security.AUTH_FAILURE_DELAY)
            raise AuthenticationError("Invalid email or password")

        if user.status == UserStatus.SUSPENDED.value:
            raise AuthorizationError("Account suspended")

        token = self._generate_tokens(user.id)

        await self.rate_limiter.clear_attempts(f"login_email_{email}")
        await self.rate_limiter.clear_attempts(f"login_ip_{client_ip}")
        await self.user_repository.update_last_login(user.id)

        return user, token

    async def refresh_tokens(self, refresh_token: str) -> Token:
        """Обновление access token с помощью refresh token"""
        try:
            payload = decode_token(refresh_token)
        except ValueError as e:
            raise AuthenticationError(str(e))

        if payload.get("type") != "refresh":
            raise AuthenticationError("Invalid token type")

        user_id = payload.get("sub")
        if not user_id:
            raise AuthenticationError("Invalid token payload")

        user = await self.user_repository.get_by_id(int(user_id))
        if not user:
            raise AuthenticationError("User not found")

        return self._generate_tokens(user.id)

    async def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if not verify_password(current_password, user.password_hash):
            raise AuthenticationError("Current password is incorrect")
        await self.user_repository.update_password(user.id, get_password_hash(new_password))

    def _generate_tokens(self, user_id: int) -> Token:
        """Генерация пары access/refresh токенов"""
        access_token_expires = timedelta(
            minutes=settings.security.JWT_ACCESS_TOKEN_EXPIRE_MINUTES
        )
        return Token(
            access_token=create_access_token(
                data={"sub": str(user_id)},
                expires_delta=access_token_expires
            ),
            refresh_token=create_refresh_token(data={"sub": str(user_id)}),
            expires_in=int(access_token_expires.total_seconds())
        )

    async def get_current_user(self, token: str) -> User:
        """Получение текущего пользователя из токена"""
        try:
            payload = decode_token(token)
        except ValueError as e:
            raise AuthenticationError(str(e))

        if payload.get("type") != "access":
            raise AuthenticationError("Invalid token type for this operation")

        user_id = payload.get("sub")
        if not user_id:
            raise AuthenticationError("Invalid token payload")

        user = await self.user_repository.get_by_id(int(user_id))
        if not user:
            raise AuthenticationError("User not found")
        if user.status == UserStatus.SUSPENDED.value:
            raise AuthorizationError("Account suspended")

        return user
