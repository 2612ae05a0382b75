# medqbank/repositories/user_repository.py
from typing import Optional, Sequence, Tuple
from datetime import datetime, timezone
from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from medqbank.models.user import User, UserRole
from medqbank.core.schemas.auth import UserCreate


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_email(self, email: str) -> Optional[User]:
        """Получить пользователя по email"""
        stmt = select(User).where(func.lower(User.email) == email.lower())
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: int) -> Optional[User]:
        """Получить пользователя по ID"""
        return await self.session.get(User, user_id)

    async def create(
        self,
        user_create: UserCreate,
        password_hash: str,
        role: str = UserRole.STUDENT.value,
    ) -> User:
        """Создать нового пользователя"""
        db_user = User(
            email=user_create.email.lower(),
            password_hash=password_hash,
            name=user_create.name,
            niveau_id=user_create.niveau_id,
            role=role,
        )
        self.session.add(db_user)
        await self.session.commit()
        await self.session.refresh(db_user)
        return db_user

    async def update_password(self, user_id: int, new_password_hash: str) -> None:
        """Обновить пароль пользователя"""
        stmt = update(User).where(User.id == user_id).values(
            password_hash=new_password_hash,
            updated_at=datetime.now(timezone.utc)
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def update_last_login(self, user_id: int) -> None:
        """Обновить время последнего входа"""
        stmt = update(User).where(User.id == user_id).values(
            last_login_at=datetime.now(timezone.utc),
            updated_at=datetime.now(timezone.utc)
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def update_fields(self, user: User, **fields) -> User:
        """Обновить произвольные поля (роль, статус, профиль, подписка)"""
        for key, value in fields.items():
            setattr(user, key, value)
        await self.session.commit()
        await self.session.refresh(user)
        return user

    async def list_users(
        self,
        search: Optional[str] = None,
        role: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> Tuple[Sequence[User], int]:
        """Список пользователей с фильтрами и общим количеством"""
        conditions = []
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(or_(func.lower(User.email).like(pattern), func.lower(User.name).like(pattern)))
        if role:
            conditions.append(User.role == role)

        total = await self.session.scalar(select(func.count(User.id)).where(*conditions))
        stmt = (
            select(User)
            .where(*conditions)
            .order_by(User.created_at.desc(), User.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all(), total or 0
