from typing import Dict, Iterable, List, Optional, Tuple
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_
from sqlalchemy.orm import undefer

from app.core.database import utcnow
from app.models.file import FileEntity, FileAccess
from app.schemas.file import FileSearchParams

SORT_COLUMNS = {
    "name": FileEntity.original_file_name,
    "size": FileEntity.file_size,
    "createdat": FileEntity.created_at,
    "updatedat": FileEntity.updated_at,
    "downloads": FileEntity.download_count,
}


class FileRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, db_file: FileEntity) -> FileEntity:
        """Create a new file record"""
        self.db.add(db_file)
        await self.db.commit()
        return db_file

    def add(self, db_file: FileEntity) -> None:
        self.db.add(db_file)

    async def save(self) -> None:
        """Commit pending changes"""
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    async def get_by_id(self, file_id: int, with_content: bool = False,
                        include_deleted: bool = False) -> Optional[FileEntity]:
        """Get file by ID"""
        query = select(FileEntity).filter(FileEntity.id == file_id)
        if not include_deleted:
            query = query.filter(FileEntity.is_deleted.is_(False))
        if with_content:
            query = query.options(
                undefer(FileEntity.file_content), undefer(FileEntity.thumbnail_content)
            ).execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_folder(self, folder_id: Optional[int], with_content: bool = False) -> List[FileEntity]:
        """Get live files of a folder, or root-level files when folder_id is None"""
        query = select(FileEntity).filter(FileEntity.is_deleted.is_(False))
        if folder_id is None:
            query = query.filter(FileEntity.folder_id.is_(None))
        else:
            query = query.filter(FileEntity.folder_id == folder_id)
        if with_content:
            query = query.options(
                undefer(FileEntity.file_content), undefer(FileEntity.thumbnail_content)
            ).execution_options(populate_existing=True)
        result = await self.db.execute(query.order_by(FileEntity.original_file_name))
        return list(result.scalars().all())

    async def get_by_folders(self, folder_ids: Iterable[int]) -> List[FileEntity]:
        ids = list(folder_ids)
        if not ids:
            return []
        result = await self.db.execute(
            select(FileEntity).filter(FileEntity.folder_id.in_(ids), FileEntity.is_deleted.is_(False))
        )
        return list(result.scalars().all())

    async def search(self, params: FileSearchParams) -> Tuple[List[FileEntity], int]:
        """Filtered, sorted and paged file listing"""
        query = select(FileEntity).filter(FileEntity.is_deleted.is_(False))
        if params.search_term:
            pattern = f"%{params.search_term}%"
            query = query.filter(
                or_(
                    FileEntity.original_file_name.ilike(pattern),
                    FileEntity.description.ilike(pattern),
                    FileEntity.alt.ilike(pattern),
                )
            )
        if params.file_type is not None:
            query = query.filter(FileEntity.file_type == params.file_type.value)
        if params.folder_id is not None:
            query = query.filter(FileEntity.folder_id == params.folder_id)
        if params.is_public is not None:
            query = query.filter(FileEntity.is_public.is_(params.is_public))
        if params.created_from is not None:
            query = query.filter(FileEntity.created_at >= params.created_from)
        if params.created_to is not None:
            query = query.filter(FileEntity.created_at <= params.created_to)
        if params.min_size is not None:
            query = query.filter(FileEntity.file_size >= params.min_size)
        if params.max_size is not None:
            query = query.filter(FileEntity.file_size <= params.max_size)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))

        column = SORT_COLUMNS.get((params.sort_by or "").lower(), FileEntity.created_at)
        ordering = column.asc() if (params.sort_direction or "").lower() == "asc" else column.desc()
        query = (
            query.order_by(ordering, FileEntity.id.desc())
            .offset((params.page_number - 1) * params.page_size)
            .limit(params.page_size)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def get_recent(self, count: int) -> List[FileEntity]:
        result = await self.db.execute(
            select(FileEntity)
            .filter(FileEntity.is_deleted.is_(False))
            .order_by(FileEntity.created_at.desc(), FileEntity.id.desc())
            .limit(count)
        )
        return list(result.scalars().all())

    async def get_pending_images(self, limit: int = 50) -> List[FileEntity]:
        result = await self.db.execute(
            select(FileEntity)
            .filter(FileEntity.is_deleted.is_(False), FileEntity.processing_status == "Pending")
            .order_by(FileEntity.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def statistics(self) -> Dict:
        totals = await self.db.execute(
            select(
                func.count(FileEntity.id),
                func.coalesce(func.sum(FileEntity.file_size), 0),
                func.coalesce(func.sum(FileEntity.download_count), 0),
                func.max(FileEntity.created_at),
            ).filter(FileEntity.is_deleted.is_(False))
        )
        total_files, total_size, total_downloads, last_upload = totals.one()
        by_type = await self.db.execute(
            select(FileEntity.file_type, func.count(FileEntity.id))
            .filter(FileEntity.is_deleted.is_(False))
            .group_by(FileEntity.file_type)
        )
        return {
            "total_files": total_files or 0,
            "total_size": int(total_size or 0),
            "total_downloads": int(total_downloads or 0),
            "last_upload": last_upload,
            "files_by_type": {file_type: count for file_type, count in by_type.all()},
        }

    async def get_updated_since(self, since: Optional[datetime]) -> List[FileEntity]:
        """Files created or updated after a point in time, deleted ones included"""
        query = select(FileEntity)
        if since is not None:
            query = query.filter(
                or_(FileEntity.created_at >= since, FileEntity.updated_at >= since)
            )
        result = await self.db.execute(query.order_by(FileEntity.id))
        return list(result.scalars().all())

    async def record_access(
        self,
        file_id: int,
        access_type: str,
        user_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> FileAccess:
        """Append an access audit row (committed by the caller)"""
        access = FileAccess(
            file_id=file_id,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:512] or None,
            access_type=access_type,
            accessed_at=utcnow(),
        )
        self.db.add(access)
        return access

    async def get_accesses(self, file_id: int) -> List[FileAccess]:
        result = await self.db.execute(
            select(FileAccess).filter(FileAccess.file_id == file_id).order_by(FileAccess.id)
        )
        return list(result.scalars().all())

    def soft_delete(self, db_file: FileEntity, user_id: Optional[int] = None) -> None:
        db_file.is_deleted = True
        db_file.deleted_at = utcnow()
        db_file.updated_by_user_id = user_id
