from typing import Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
import logging

from app.core.cache_keys import CacheKeys
from app.core.events import DomainEvent, EventBus, event_bus
from app.core.redis import RedisClient, redis_client
from app.models.folder import Folder
from app.repositories.file import FileRepository
from app.repositories.folder import FolderRepository
from app.schemas.folder import (
    Breadcrumb,
    Folder as FolderSchema,
    FolderCreate,
    FolderStatistics,
    FolderTreeNode,
    FolderType,
    FolderUpdate,
)
from app.services.file import clone_file_entity
from app.services.file_validation import validate_file_name
from app.utils.exceptions import ConflictError, InvalidOperationError, NotFoundError, ValidationError
from app.utils.formatting import format_file_size

logger = logging.getLogger(__name__)

MAX_PATH_LENGTH = 1024
PATH_SEPARATOR = "/"

SYSTEM_FOLDER_NAMES: Dict[FolderType, str] = {
    FolderType.GENERAL: "General",
    FolderType.IMAGES: "Images",
    FolderType.DOCUMENTS: "Documents",
    FolderType.VIDEOS: "Videos",
    FolderType.AUDIO: "Audio",
    FolderType.USER_AVATARS: "UserAvatars",
    FolderType.COMPANY_ASSETS: "CompanyAssets",
    FolderType.TEMPORARY: "Temporary",
}


def build_path(parent_path: Optional[str], name: str) -> str:
    """Materialized path of a folder named `name` under `parent_path`"""
    path = f"{parent_path}{PATH_SEPARATOR}{name}" if parent_path else name
    if len(path) > MAX_PATH_LENGTH:
        raise ValidationError(f"Folder path exceeds {MAX_PATH_LENGTH} characters")
    return path


class FolderService:
    def __init__(self, db: AsyncSession, cache: Optional[RedisClient] = None, bus: Optional[EventBus] = None):
        self.folder_repo = FolderRepository(db)
        self.file_repo = FileRepository(db)
        self.redis_client = cache or redis_client
        self.event_bus = bus or event_bus

    async def _publish(self, action: str, folder_id: Optional[int], **data) -> None:
        await self.event_bus.publish(DomainEvent("folder", action, folder_id, data))

    async def _get_or_404(self, folder_id: int) -> Folder:
        folder = await self.folder_repo.get_by_id(folder_id)
        if not folder:
            raise NotFoundError(f"Folder with ID {folder_id} not found")
        return folder

    async def _get_parent_path(self, parent_id: Optional[int]) -> Optional[str]:
        if parent_id is None:
            return None
        parent = await self.folder_repo.get_by_id(parent_id)
        return parent.path if parent else None

    async def _unique_name(self, parent_id: Optional[int], name: str) -> str:
        """Append " (n)" until the name is free among the siblings"""
        candidate = name
        counter = 1
        while await self.folder_repo.name_exists(parent_id, candidate):
            candidate = f"{name} ({counter})"
            counter += 1
        return candidate

    async def _recompute_paths(self, folder: Folder, parent_path: Optional[str]) -> List[int]:
        """Rewrite the path of a folder and all of its descendants (not committed)"""
        folder.path = build_path(parent_path, folder.name)
        affected = [folder.id]
        level = {folder.id: folder}
        while level:
            children = await self.folder_repo.get_children_of(level.keys())
            next_level = {}
            for child in children:
                child.path = build_path(level[child.parent_folder_id].path, child.name)
                affected.append(child.id)
                next_level[child.id] = child
            level = next_level
        return affected

    async def to_schema(self, folder: Folder) -> FolderSchema:
        """Folder DTO with file and subfolder counts"""
        return (await self.to_schemas([folder]))[0]

    async def to_schemas(self, folders: List[Folder]) -> List[FolderSchema]:
        ids = [f.id for f in folders]
        file_counts = await self.folder_repo.file_counts(ids)
        subfolder_counts = await self.folder_repo.subfolder_counts(ids)
        return [
            FolderSchema.model_validate(folder).model_copy(
                update={
                    "file_count": file_counts.get(folder.id, 0),
                    "subfolder_count": subfolder_counts.get(folder.id, 0),
                }
            )
            for folder in folders
        ]

    async def create_folder(self, folder_data: FolderCreate, user_id: Optional[int] = None) -> Folder:
        """Create a folder under an existing parent, or at the root"""
        name = (folder_data.name or "").strip()
        if not validate_file_name(name):
            raise ValidationError("Invalid folder name")

        parent = None
        if folder_data.parent_folder_id is not None:
            parent = await self.folder_repo.get_by_id(folder_data.parent_folder_id)
            if not parent:
                raise ValidationError("Parent folder not found")

        if await self.folder_repo.name_exists(folder_data.parent_folder_id, name):
            raise ValidationError(f"A folder named '{name}' already exists in this location")

        folder = Folder(
            name=name,
            description=folder_data.description,
            parent_folder_id=folder_data.parent_folder_id,
            path=build_path(parent.path if parent else None, name),
            folder_type=folder_data.folder_type.value,
            is_public=folder_data.is_public,
            is_system_folder=False,
            folder_metadata=folder_data.metadata,
            created_by_user_id=user_id,
            updated_by_user_id=user_id,
        )
        await self.folder_repo.create(folder)
        logger.info(f"Created folder {folder.id} at '{folder.path}'")
        await self._publish("created", folder.id, parent_ids=[folder.parent_folder_id])
        return folder

    async def get_folder(self, folder_id: int) -> Folder:
        return await self._get_or_404(folder_id)

    async def get_folders(self, parent_id: Optional[int] = None) -> List[Folder]:
        """Direct subfolders of a folder, root folders when parent_id is None"""
        return await self.folder_repo.get_children(parent_id)

    async def get_folders_paged(self, page_number: int, page_size: int):
        return await self.folder_repo.get_paged(page_number, page_size)

    async def update_folder(self, folder_id: int, folder_data: FolderUpdate, user_id: Optional[int] = None) -> Folder:
        folder = await self._get_or_404(folder_id)

        if folder_data.name is not None and folder_data.name.strip() != folder.name:
            name = folder_data.name.strip()
            if not validate_file_name(name):
                raise ValidationError("Invalid folder name")
            if await self.folder_repo.name_exists(folder.parent_folder_id, name, exclude_id=folder.id):
                raise ValidationError(f"A folder named '{name}' already exists in this location")
            if folder.is_system_folder:
                raise InvalidOperationError("System folders cannot be renamed")
            folder.name = name

        if folder_data.description is not None:
            folder.description = folder_data.description
        if folder_data.is_public is not None:
            folder.is_public = folder_data.is_public
        if folder_data.metadata is not None:
            folder.folder_metadata = folder_data.metadata
        folder.updated_by_user_id = user_id

        try:
            affected = await self._recompute_paths(folder, await self._get_parent_path(folder.parent_folder_id))
            await self.folder_repo.save()
        except Exception:
            await self.folder_repo.rollback()
            raise

        await self._publish("updated", folder.id, affected_ids=affected, parent_ids=[folder.parent_folder_id])
        return folder

    async def rename_folder(self, folder_id: int, new_name: str, user_id: Optional[int] = None) -> bool:
        """Rename a folder; False when the name is invalid or taken by a sibling"""
        folder = await self._get_or_404(folder_id)
        name = (new_name or "").strip()
        if not validate_file_name(name):
            return False
        if await self.folder_repo.name_exists(folder.parent_folder_id, name, exclude_id=folder.id):
            logger.info(f"Rename of folder {folder_id} to '{name}' rejected: name in use")
            return False
        if folder.is_system_folder:
            raise InvalidOperationError("System folders cannot be renamed")
        if name == folder.name:
            return True

        try:
            folder.name = name
            folder.updated_by_user_id = user_id
            affected = await self._recompute_paths(folder, await self._get_parent_path(folder.parent_folder_id))
            await self.folder_repo.save()
        except Exception:
            await self.folder_repo.rollback()
            raise

        logger.info(f"Renamed folder {folder_id} to '{name}'")
        await self._publish("renamed", folder.id, affected_ids=affected, parent_ids=[folder.parent_folder_id])
        return True

    async def move_folder(self, folder_id: int, new_parent_id: Optional[int], user_id: Optional[int] = None) -> Folder:
        """Re-parent a folder and rewrite the paths of its whole subtree in one transaction"""
        folder = await self._get_or_404(folder_id)

        if new_parent_id == folder_id:
            raise InvalidOperationError("A folder cannot be moved into itself")

        new_parent = None
        if new_parent_id is not None:
            new_parent = await self.folder_repo.get_by_id(new_parent_id)
            if not new_parent:
                raise ValidationError("Destination folder not found")
            if await self.is_subfolder_of(new_parent_id, folder_id):
                raise InvalidOperationError("Cannot move a folder into one of its subfolders")

        if folder.parent_folder_id == new_parent_id:
            return folder

        if await self.folder_repo.name_exists(new_parent_id, folder.name, exclude_id=folder.id):
            raise ValidationError(f"A folder named '{folder.name}' already exists in the destination")

        old_parent_id = folder.parent_folder_id
        try:
            folder.parent_folder_id = new_parent_id
            folder.updated_by_user_id = user_id
            affected = await self._recompute_paths(folder, new_parent.path if new_parent else None)
            await self.folder_repo.save()
        except Exception:
            await self.folder_repo.rollback()
            logger.error(f"Moving folder {folder_id} to {new_parent_id} failed, changes rolled back")
            raise

        logger.info(f"Moved folder {folder_id} from {old_parent_id} to {new_parent_id} ({len(affected)} paths updated)")
        await self._publish("moved", folder.id, affected_ids=affected, parent_ids=[old_parent_id, new_parent_id])
        return folder

    async def delete_folder(self, folder_id: int, delete_files: bool = False, user_id: Optional[int] = None) -> bool:
        """Soft-delete a folder; a non-empty folder needs delete_files to cascade"""
        folder = await self._get_or_404(folder_id)
        if folder.is_system_folder:
            raise InvalidOperationError("System folders cannot be deleted")

        descendants = await self.folder_repo.get_descendants(folder.id)
        folder_ids = [folder.id] + [d.id for d in descendants]
        files = await self.file_repo.get_by_folders(folder_ids)

        if (descendants or files) and not delete_files:
            raise InvalidOperationError(
                "Folder is not empty. Set deleteFiles=true to delete its subfolders and files"
            )

        try:
            for db_file in files:
                self.file_repo.soft_delete(db_file, user_id)
            for item in [folder] + descendants:
                self.folder_repo.soft_delete(item, user_id)
            await self.folder_repo.save()
        except Exception:
            await self.folder_repo.rollback()
            raise

        logger.info(f"Deleted folder {folder_id} with {len(descendants)} subfolders and {len(files)} files")
        await self._publish(
            "deleted", folder.id,
            affected_ids=folder_ids, parent_ids=[folder.parent_folder_id], files_changed=bool(files),
        )
        return True

    async def copy_folder(
        self,
        folder_id: int,
        destination_folder_id: Optional[int],
        new_name: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> Folder:
        """Deep copy a folder with its subfolders and files"""
        source = await self._get_or_404(folder_id)

        destination = None
        if destination_folder_id is not None:
            destination = await self.folder_repo.get_by_id(destination_folder_id)
            if not destination:
                raise ValidationError("Destination folder not found")
            if destination_folder_id == folder_id or await self.is_subfolder_of(destination_folder_id, folder_id):
                raise InvalidOperationError("Cannot copy a folder into itself or one of its subfolders")

        name = (new_name or f"Copy of {source.name}").strip()
        if not validate_file_name(name):
            raise ValidationError("Invalid folder name")
        name = await self._unique_name(destination_folder_id, name)

        try:
            root_copy = self._clone_folder(source, destination_folder_id, destination.path if destination else None,
                                           name, user_id)
            self.folder_repo.add(root_copy)
            await self.folder_repo.flush()

            file_count = 0
            level = [(source, root_copy)]
            while level:
                next_level = []
                for original, copy in level:
                    for db_file in await self.file_repo.get_by_folder(original.id, with_content=True):
                        self.file_repo.add(clone_file_entity(db_file, copy.id, db_file.original_file_name, user_id))
                        file_count += 1
                    for child in await self.folder_repo.get_children(original.id):
                        child_copy = self._clone_folder(child, copy.id, copy.path, child.name, user_id)
                        self.folder_repo.add(child_copy)
                        next_level.append((child, child_copy))
                await self.folder_repo.flush()
                level = next_level
            await self.folder_repo.save()
        except Exception:
            await self.folder_repo.rollback()
            raise

        logger.info(f"Copied folder {folder_id} to {root_copy.id} ('{root_copy.path}', {file_count} files)")
        await self._publish(
            "copied", root_copy.id, parent_ids=[destination_folder_id], files_changed=file_count > 0
        )
        return root_copy

    def _clone_folder(self, source: Folder, parent_id: Optional[int], parent_path: Optional[str],
                      name: str, user_id: Optional[int]) -> Folder:
        return Folder(
            name=name,
            description=source.description,
            parent_folder_id=parent_id,
            path=build_path(parent_path, name),
            folder_type=source.folder_type,
            is_public=source.is_public,
            is_system_folder=False,
            folder_metadata=dict(source.folder_metadata) if source.folder_metadata else None,
            created_by_user_id=user_id,
            updated_by_user_id=user_id,
        )

    async def get_folder_tree(self, root_folder_id: Optional[int] = None) -> FolderTreeNode:
        """Nested folder structure; a virtual "Root" node when no root is given"""
        cache_key = CacheKeys.folder_tree(root_folder_id)
        cached = await self.redis_client.get_json(cache_key)
        if cached:
            return FolderTreeNode.model_validate(cached)

        folders = await self.folder_repo.get_all()
        by_id = {f.id: f for f in folders}
        children: Dict[Optional[int], List[Folder]] = {}
        for folder in folders:
            children.setdefault(folder.parent_folder_id, []).append(folder)
        file_counts = await self.folder_repo.file_counts(list(by_id))

        def build(folder: Folder, level: int) -> FolderTreeNode:
            kids = children.get(folder.id, [])
            return FolderTreeNode(
                id=folder.id,
                name=folder.name,
                path=folder.path,
                parent_folder_id=folder.parent_folder_id,
                folder_type=folder.folder_type,
                is_public=folder.is_public,
                file_count=file_counts.get(folder.id, 0),
                has_sub_folders=bool(kids),
                level=level,
                sub_folders=[build(kid, level + 1) for kid in kids],
            )

        if root_folder_id is None:
            roots = children.get(None, [])
            tree = FolderTreeNode(
                id=0,
                name="Root",
                path="",
                has_sub_folders=bool(roots),
                level=0,
                sub_folders=[build(root, 1) for root in roots],
            )
        else:
            root = by_id.get(root_folder_id)
            if not root:
                raise NotFoundError(f"Folder with ID {root_folder_id} not found")
            tree = build(root, 0)

        await self.redis_client.set_json(cache_key, tree.model_dump(mode="json"))
        return tree

    async def get_or_create_system_folder(self, folder_type: FolderType, user_id: Optional[int] = None) -> Folder:
        """Return the root system folder of a type, creating it on first use"""
        existing = await self.folder_repo.get_system_folder(folder_type.value)
        if existing:
            return existing

        name = await self._unique_name(None, SYSTEM_FOLDER_NAMES[folder_type])
        folder = Folder(
            name=name,
            description=f"System folder for {folder_type.value}",
            parent_folder_id=None,
            path=build_path(None, name),
            folder_type=folder_type.value,
            is_public=folder_type != FolderType.USER_AVATARS,
            is_system_folder=True,
            folder_metadata={"isSystem": True, "folderType": folder_type.value},
            created_by_user_id=user_id,
        )
        try:
            await self.folder_repo.create(folder)
        except IntegrityError:
            # Another request created it first
            await self.folder_repo.rollback()
            existing = await self.folder_repo.get_system_folder(folder_type.value)
            if existing:
                return existing
            raise ConflictError(f"Could not create system folder {folder_type.value}")

        logger.info(f"Created system folder '{name}' ({folder_type.value})")
        await self._publish("created", folder.id, parent_ids=[None])
        return folder

    async def get_user_avatar_folder(self, user_id: int) -> Folder:
        """Per-user folder under the UserAvatars system folder"""
        avatars = await self.get_or_create_system_folder(FolderType.USER_AVATARS)
        name = f"user_{user_id}"
        for child in await self.folder_repo.get_children(avatars.id):
            if child.name.lower() == name:
                return child

        folder = Folder(
            name=name,
            description=f"Avatar folder for user {user_id}",
            parent_folder_id=avatars.id,
            path=build_path(avatars.path, name),
            folder_type=FolderType.USER_AVATARS.value,
            is_public=False,
            is_system_folder=False,
            folder_metadata={"userId": user_id},
            created_by_user_id=user_id,
        )
        await self.folder_repo.create(folder)
        await self._publish("created", folder.id, parent_ids=[avatars.id])
        return folder

    async def get_company_assets_folder(self) -> Folder:
        return await self.get_or_create_system_folder(FolderType.COMPANY_ASSETS)

    async def get_ancestors(self, folder_id: int) -> List[Folder]:
        """Ancestor chain of a folder, nearest parent first"""
        folder = await self._get_or_404(folder_id)
        ancestors = []
        seen = {folder.id}
        parent_id = folder.parent_folder_id
        while parent_id is not None and parent_id not in seen:
            parent = await self.folder_repo.get_by_id(parent_id, include_deleted=True)
            if not parent:
                break
            ancestors.append(parent)
            seen.add(parent.id)
            parent_id = parent.parent_folder_id
        return ancestors

    async def is_subfolder_of(self, folder_id: int, potential_ancestor_id: int) -> bool:
        """True when potential_ancestor_id appears in the ancestor chain of folder_id"""
        seen = set()
        current = await self.folder_repo.get_by_id(folder_id, include_deleted=True)
        while current is not None and current.parent_folder_id is not None:
            if current.parent_folder_id == potential_ancestor_id:
                return True
            if current.parent_folder_id in seen:
                break
            seen.add(current.parent_folder_id)
            current = await self.folder_repo.get_by_id(current.parent_folder_id, include_deleted=True)
        return False

    async def get_folder_path(self, folder_id: int) -> str:
        folder = await self._get_or_404(folder_id)
        return folder.path

    async def get_breadcrumbs(self, folder_id: int) -> List[Breadcrumb]:
        """Root-first trail ending at the folder itself"""
        folder = await self._get_or_404(folder_id)
        chain = list(reversed(await self.get_ancestors(folder_id))) + [folder]
        return [
            Breadcrumb(id=item.id, name=item.name, path=item.path, is_last=index == len(chain) - 1)
            for index, item in enumerate(chain)
        ]

    async def get_folder_by_path(self, path: str) -> Optional[Folder]:
        normalized = PATH_SEPARATOR.join(part.strip() for part in (path or "").split(PATH_SEPARATOR) if part.strip())
        if not normalized:
            return None
        return await self.folder_repo.get_by_path(normalized)

    async def search_folders(self, term: str) -> List[Folder]:
        term = (term or "").strip()
        if not term:
            raise ValidationError("Search term is required")
        return await self.folder_repo.search(term)

    async def validate_folder_name(self, name: str, parent_id: Optional[int] = None,
                                   exclude_folder_id: Optional[int] = None) -> bool:
        name = (name or "").strip()
        if not validate_file_name(name):
            return False
        return not await self.folder_repo.name_exists(parent_id, name, exclude_id=exclude_folder_id)

    async def folder_exists(self, folder_id: int) -> bool:
        return await self.folder_repo.get_by_id(folder_id) is not None

    async def get_folder_statistics(self, folder_id: int) -> FolderStatistics:
        folder = await self._get_or_404(folder_id)
        file_count, total_size, last_file_change = await self.folder_repo.file_statistics(folder.id)
        subfolder_count = await self.folder_repo.count_subfolders(folder.id)
        candidates = [d for d in (folder.updated_at, folder.created_at, last_file_change) if d is not None]
        return FolderStatistics(
            folder_id=folder.id,
            file_count=file_count,
            subfolder_count=subfolder_count,
            total_size=total_size,
            total_size_formatted=format_file_size(total_size),
            last_modified=max(candidates, key=lambda d: d.replace(tzinfo=None)) if candidates else None,
        )
