from typing import Dict, List, Optional, Tuple
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, delete, or_

from app.core.database import utcnow
from app.models.indexing import IndexingJob, SearchIndex


class IndexingJobRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, job_type: str, job_metadata: Optional[dict] = None) -> IndexingJob:
        """Create a pending job"""
        job = IndexingJob(job_type=job_type, status="Pending", job_metadata=job_metadata or {})
        self.db.add(job)
        await self.db.commit()
        return job

    async def save(self) -> None:
        await self.db.commit()

    async def refresh(self, job: IndexingJob) -> None:
        await self.db.refresh(job)

    async def get_by_id(self, job_id: int) -> Optional[IndexingJob]:
        """Get job by ID"""
        result = await self.db.execute(select(IndexingJob).filter(IndexingJob.id == job_id))
        return result.scalar_one_or_none()

    async def get_paged(self, page: int, page_size: int, status: Optional[str] = None) -> Tuple[List[IndexingJob], int]:
        query = select(IndexingJob)
        if status:
            query = query.filter(IndexingJob.status == status)
        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(IndexingJob.created_at.desc(), IndexingJob.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total or 0

    async def get_recent(self, count: int) -> List[IndexingJob]:
        result = await self.db.execute(
            select(IndexingJob).order_by(IndexingJob.created_at.desc(), IndexingJob.id.desc()).limit(count)
        )
        return list(result.scalars().all())

    async def get_next_pending(self) -> Optional[IndexingJob]:
        """Oldest pending job"""
        result = await self.db.execute(
            select(IndexingJob)
            .filter(IndexingJob.status == "Pending")
            .order_by(IndexingJob.created_at, IndexingJob.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_running_started_before(self, cutoff: datetime) -> List[IndexingJob]:
        result = await self.db.execute(
            select(IndexingJob).filter(IndexingJob.status == "Running", IndexingJob.started_at < cutoff)
        )
        return list(result.scalars().all())

    async def delete_finished_before(self, cutoff: datetime, statuses: Tuple[str, ...]) -> int:
        result = await self.db.execute(
            delete(IndexingJob).where(
                IndexingJob.status.in_(statuses),
                IndexingJob.created_at < cutoff,
            )
        )
        await self.db.commit()
        return result.rowcount or 0

    async def count_by_status(self) -> Dict[str, int]:
        result = await self.db.execute(
            select(IndexingJob.status, func.count(IndexingJob.id)).group_by(IndexingJob.status)
        )
        return {status: count for status, count in result.all()}

    async def count_by_type(self) -> Dict[str, int]:
        result = await self.db.execute(
            select(IndexingJob.job_type, func.count(IndexingJob.id)).group_by(IndexingJob.job_type)
        )
        return {job_type: count for job_type, count in result.all()}

    async def count_created_since(self, since: datetime) -> int:
        return await self.db.scalar(
            select(func.count(IndexingJob.id)).filter(IndexingJob.created_at >= since)
        ) or 0

    async def last_completed(self, job_type: str) -> Optional[datetime]:
        return await self.db.scalar(
            select(func.max(IndexingJob.completed_at)).filter(
                IndexingJob.job_type == job_type, IndexingJob.status == "Completed"
            )
        )

    async def get_completed_durations(self, limit: int = 500) -> List[Tuple[datetime, datetime]]:
        result = await self.db.execute(
            select(IndexingJob.started_at, IndexingJob.completed_at)
            .filter(
                IndexingJob.status == "Completed",
                IndexingJob.started_at.is_not(None),
                IndexingJob.completed_at.is_not(None),
            )
            .order_by(IndexingJob.completed_at.desc())
            .limit(limit)
        )
        return list(result.all())


class SearchIndexRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, entity_type: str, entity_id: int) -> Optional[SearchIndex]:
        result = await self.db.execute(
            select(SearchIndex).filter(SearchIndex.entity_type == entity_type, SearchIndex.entity_id == entity_id)
        )
        return result.scalar_one_or_none()

    async def upsert(self, entity_type: str, entity_id: int, title: str, content: Optional[str],
                     metadata: Optional[dict], is_public: bool) -> SearchIndex:
        """Insert or refresh an index entry (not committed)"""
        entry = await self.get(entity_type, entity_id)
        if entry is None:
            entry = SearchIndex(entity_type=entity_type, entity_id=entity_id)
            self.db.add(entry)
        entry.title = title[:255]
        entry.content = content
        entry.index_metadata = metadata
        entry.is_public = is_public
        entry.last_indexed_at = utcnow()
        return entry

    async def remove(self, entity_type: str, entity_id: int) -> None:
        await self.db.execute(
            delete(SearchIndex).where(SearchIndex.entity_type == entity_type, SearchIndex.entity_id == entity_id)
        )

    async def search(self, term: str, public_only: bool, limit: int = 50) -> List[SearchIndex]:
        pattern = f"%{term}%"
        query = select(SearchIndex).filter(
            or_(SearchIndex.title.ilike(pattern), SearchIndex.content.ilike(pattern))
        )
        if public_only:
            query = query.filter(SearchIndex.is_public.is_(True))
        result = await self.db.execute(query.order_by(SearchIndex.title).limit(limit))
        return list(result.scalars().all())
