# medqbank/repositories/job_repository.py
from typing import Optional, Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from medqbank.models.system import AiValidationJob


class JobRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields) -> AiValidationJob:
        job = AiValidationJob(**fields)
        self.session.add(job)
        await self.session.commit()
        await self.session.refresh(job)
        return job

    async def get(self, job_id: int) -> Optional[AiValidationJob]:
        return await self.session.get(AiValidationJob, job_id)

    async def list(
        self,
        user_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: int = 20,
    ) -> Sequence[AiValidationJob]:
        """Задачи пользователя (или все при user_id=None), новые первыми"""
        stmt = select(AiValidationJob).order_by(AiValidationJob.created_at.desc(), AiValidationJob.id.desc())
        if user_id is not None:
            stmt = stmt.where(AiValidationJob.user_id == user_id)
        if status:
            stmt = stmt.where(AiValidationJob.status == status)
        result = await self.session.execute(stmt.limit(limit))
        return result.scalars().all()

    async def update(self, job_id: int, **fields) -> Optional[AiValidationJob]:
        job = await self.get(job_id)
        if job is None:
            return None
        for key, value in fields.items():
            setattr(job, key, value)
        await self.session.commit()
        return job

    async def delete(self, job: AiValidationJob) -> None:
        await self.session.delete(job)
        await self.session.commit()
