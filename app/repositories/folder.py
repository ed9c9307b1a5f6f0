from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_

from app.core.database import utcnow
from app.models.folder import Folder
from app.models.file import FileEntity


class FolderRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, folder: Folder) -> Folder:
        """Create a new folder record"""
        self.db.add(folder)
        await self.db.commit()
        return folder

    async def save(self) -> None:
        """Commit pending changes"""
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    def add(self, folder: Folder) -> None:
        self.db.add(folder)

    async def flush(self) -> None:
        await self.db.flush()

    async def get_by_id(self, folder_id: int, include_deleted: bool = False) -> Optional[Folder]:
        """Get folder by ID"""
        query = select(Folder).filter(Folder.id == folder_id)
        if not include_deleted:
            query = query.filter(Folder.is_deleted.is_(False))
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_children(self, parent_id: Optional[int]) -> List[Folder]:
        """Get live direct subfolders of a folder, or root folders when parent_id is None"""
        query = select(Folder).filter(Folder.is_deleted.is_(False))
        if parent_id is None:
            query = query.filter(Folder.parent_folder_id.is_(None))
        else:
            query = query.filter(Folder.parent_folder_id == parent_id)
        result = await self.db.execute(query.order_by(Folder.name))
        return list(result.scalars().all())

    async def get_children_of(self, parent_ids: Iterable[int]) -> List[Folder]:
        """Get live subfolders of several folders at once"""
        ids = list(parent_ids)
        if not ids:
            return []
        query = (
            select(Folder)
            .filter(Folder.parent_folder_id.in_(ids), Folder.is_deleted.is_(False))
            .order_by(Folder.name)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_descendants(self, folder_id: int) -> List[Folder]:
        """Breadth-first list of every live descendant"""
        descendants: List[Folder] = []
        level = [folder_id]
        seen = {folder_id}
        while level:
            children = [c for c in await self.get_children_of(level) if c.id not in seen]
            seen.update(c.id for c in children)
            descendants.extend(children)
            level = [c.id for c in children]
        return descendants

    async def get_all(self) -> List[Folder]:
        """Get every live folder"""
        result = await self.db.execute(
            select(Folder).filter(Folder.is_deleted.is_(False)).order_by(Folder.name)
        )
        return list(result.scalars().all())

    async def get_paged(self, page_number: int, page_size: int, parent_id: Optional[int] = None,
                        filter_by_parent: bool = False) -> Tuple[List[Folder], int]:
        query = select(Folder).filter(Folder.is_deleted.is_(False))
        if filter_by_parent:
            if parent_id is None:
                query = query.filter(Folder.parent_folder_id.is_(None))
            else:
                query = query.filter(Folder.parent_folder_id == parent_id)
        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(Folder.path).offset((page_number - 1) * page_size).limit(page_size)
        )
        return list(result.scalars().all()), total or 0

    async def name_exists(self, parent_id: Optional[int], name: str, exclude_id: Optional[int] = None) -> bool:
        """Case-insensitive sibling name check"""
        query = select(Folder.id).filter(
            func.lower(Folder.name) == name.lower(),
            Folder.is_deleted.is_(False),
        )
        if parent_id is None:
            query = query.filter(Folder.parent_folder_id.is_(None))
        else:
            query = query.filter(Folder.parent_folder_id == parent_id)
        if exclude_id is not None:
            query = query.filter(Folder.id != exclude_id)
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none() is not None

    async def get_by_path(self, path: str) -> Optional[Folder]:
        query = select(Folder).filter(
            func.lower(Folder.path) == path.lower(),
            Folder.is_deleted.is_(False),
        )
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def search(self, term: str, limit: int = 100) -> List[Folder]:
        pattern = f"%{term}%"
        query = (
            select(Folder)
            .filter(
                Folder.is_deleted.is_(False),
                or_(Folder.name.ilike(pattern), Folder.description.ilike(pattern)),
            )
            .order_by(Folder.path)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_system_folder(self, folder_type: str) -> Optional[Folder]:
        query = select(Folder).filter(
            Folder.folder_type == folder_type,
            Folder.is_system_folder.is_(True),
            Folder.is_deleted.is_(False),
        )
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def count_subfolders(self, folder_id: int) -> int:
        return await self.db.scalar(
            select(func.count(Folder.id)).filter(
                Folder.parent_folder_id == folder_id, Folder.is_deleted.is_(False)
            )
        ) or 0

    async def file_counts(self, folder_ids: Sequence[int]) -> Dict[int, int]:
        """Live file count per folder"""
        if not folder_ids:
            return {}
        result = await self.db.execute(
            select(FileEntity.folder_id, func.count(FileEntity.id))
            .filter(FileEntity.folder_id.in_(list(folder_ids)), FileEntity.is_deleted.is_(False))
            .group_by(FileEntity.folder_id)
        )
        return {folder_id: count for folder_id, count in result.all()}

    async def file_statistics(self, folder_id: int) -> Tuple[int, int, Optional[object]]:
        """(file count, total size, last modified) of files directly in a folder"""
        result = await self.db.execute(
            select(
                func.count(FileEntity.id),
                func.coalesce(func.sum(FileEntity.file_size), 0),
                func.max(func.coalesce(FileEntity.updated_at, FileEntity.created_at)),
            ).filter(FileEntity.folder_id == folder_id, FileEntity.is_deleted.is_(False))
        )
        count, total_size, last_modified = result.one()
        return count or 0, int(total_size or 0), last_modified

    def soft_delete(self, folder: Folder, user_id: Optional[int] = None) -> None:
        folder.is_deleted = True
        folder.deleted_at = utcnow()
        folder.updated_by_user_id = user_id

    async def subfolder_counts(self, folder_ids: Sequence[int]) -> Dict[int, int]:
        """Live direct subfolder count per folder"""
        if not folder_ids:
            return {}
        result = await self.db.execute(
            select(Folder.parent_folder_id, func.count(Folder.id))
            .filter(Folder.parent_folder_id.in_(list(folder_ids)), Folder.is_deleted.is_(False))
            .group_by(Folder.parent_folder_id)
        )
        return {parent_id: count for parent_id, count in result.all()}

    async def get_updated_since(self, since) -> List[Folder]:
        """Folders created or updated after a point in time, deleted ones included"""
        query = select(Folder)
        if since is not None:
            query = query.filter(or_(Folder.created_at >= since, Folder.updated_at >= since))
        result = await self.db.execute(query.order_by(Folder.id))
        return list(result.scalars().all())
