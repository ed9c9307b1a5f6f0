"""Entity- and pattern-keyed cache invalidation plus the event subscribers that drive it."""
from typing import Dict, Iterable, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from app.core.cache_keys import CacheKeys
from app.core.events import DomainEvent, EventBus
from app.core.redis import RedisClient, SupportsPatternInvalidation, redis_client
from app.services.file import FileService
from app.services.folder import FolderService
from app.utils.exceptions import InvalidOperationError, ValidationError

logger = logging.getLogger(__name__)

ENTITY_PREFIXES: Dict[str, str] = {
    "file": CacheKeys.FILE_PREFIX,
    "folder": CacheKeys.FOLDER_PREFIX,
    "search": CacheKeys.SEARCH_PREFIX,
}
CACHE_KEY_PREFIXES = tuple(f"{prefix}{CacheKeys.SEPARATOR}" for prefix in ENTITY_PREFIXES.values())
GLOB_METACHARACTERS = "*?[]^!-\\"


class CacheInvalidationService:
    def __init__(self, cache: Optional[RedisClient] = None):
        self.cache = cache or redis_client

    def _prefix(self, entity_type: str) -> str:
        prefix = ENTITY_PREFIXES.get(entity_type.lower())
        if not prefix:
            raise ValidationError(f"Unknown cache entity type '{entity_type}'")
        return prefix

    def entity_key(self, entity_type: str, entity_id: int) -> str:
        return CacheKeys.custom(self._prefix(entity_type), "id", entity_id)

    async def invalidate_entity(self, entity_type: str, entity_id: int) -> int:
        """Remove the cache entry of one entity"""
        removed = await self.cache.delete(self.entity_key(entity_type, entity_id))
        logger.debug(f"Invalidated {entity_type}:{entity_id} ({removed} keys)")
        return removed

    async def invalidate_entities(self, entity_type: str, entity_ids: Iterable[int]) -> int:
        keys = [self.entity_key(entity_type, entity_id) for entity_id in entity_ids]
        return await self.cache.delete(*keys)

    async def invalidate_related(self, entity_type: str, entity_id: Optional[int] = None,
                                 folder_ids: Iterable[Optional[int]] = ()) -> int:
        """Remove computed aggregates that embed the entity"""
        keys: List[str] = []
        entity_type = entity_type.lower()
        if entity_type == "file":
            keys += [CacheKeys.FILES_RECENT, CacheKeys.FILE_STATISTICS]
            keys += [CacheKeys.files_by_folder(folder_id) for folder_id in folder_ids]
        elif entity_type == "folder":
            keys += [CacheKeys.folders_by_parent(folder_id) for folder_id in folder_ids]
            if entity_id is not None:
                keys.append(CacheKeys.folders_by_parent(entity_id))
        else:
            self._prefix(entity_type)
        removed = await self.cache.delete(*keys) if keys else 0
        # Folder trees and file listings embed both entity kinds
        removed += await self.invalidate_by_pattern(f"{CacheKeys.FOLDER_TREE}*")
        return removed

    async def invalidate_entity_type(self, entity_type: str) -> int:
        return await self.invalidate_by_pattern(CacheKeys.pattern(self._prefix(entity_type)))

    def _ensure_pattern_support(self) -> SupportsPatternInvalidation:
        if not isinstance(self.cache, SupportsPatternInvalidation):
            raise InvalidOperationError("Cache backend does not support pattern invalidation")
        return self.cache

    async def invalidate_by_pattern(self, pattern: str) -> int:
        """Remove every key matching a glob pattern scoped to a known cache prefix"""
        pattern = (pattern or "").strip()
        if not pattern:
            raise ValidationError("Pattern is required")
        if not pattern.strip(GLOB_METACHARACTERS):
            raise ValidationError("Use the /cache/all endpoint to clear all cache")
        if not pattern.startswith(CACHE_KEY_PREFIXES):
            allowed = ", ".join(CACHE_KEY_PREFIXES)
            raise ValidationError(f"Pattern must start with one of: {allowed}")
        removed = await self._ensure_pattern_support().remove_by_pattern(pattern)
        logger.info(f"Invalidated {removed} cache keys matching '{pattern}'")
        return removed

    async def clear_all(self) -> int:
        """Remove every cache entry; keys outside the cache prefixes are left alone"""
        cache = self._ensure_pattern_support()
        removed = 0
        for prefix in ENTITY_PREFIXES.values():
            removed += await cache.remove_by_pattern(CacheKeys.pattern(prefix))
        logger.warning(f"Cleared the entire cache ({removed} keys)")
        return removed

    async def warmup(self, db: AsyncSession) -> List[str]:
        """Pre-populate the folder tree, recent files and file statistics"""
        await FolderService(db, cache=self.cache).get_folder_tree()
        file_service = FileService(db, cache=self.cache)
        await file_service.get_recent_files()
        await file_service.get_file_statistics()
        warmed = [CacheKeys.folder_tree(), CacheKeys.FILES_RECENT, CacheKeys.FILE_STATISTICS]
        logger.info(f"Cache warmed: {', '.join(warmed)}")
        return warmed

    def get_statistics(self) -> dict:
        return self.cache.stats.as_dict()

    def reset_statistics(self) -> None:
        self.cache.stats.reset()


def register_cache_subscribers(bus: EventBus, service: Optional[CacheInvalidationService] = None) -> None:
    """Invalidate cache entries whenever files or folders change"""
    service = service or CacheInvalidationService()

    async def on_file_event(event: DomainEvent) -> None:
        if event.entity_id is not None:
            await service.invalidate_entity("file", event.entity_id)
        folder_ids = event.data.get("folder_ids", [])
        await service.invalidate_related("file", event.entity_id, folder_ids=folder_ids)

    async def on_folder_event(event: DomainEvent) -> None:
        affected = event.data.get("affected_ids", [])
        ids = set(affected)
        if event.entity_id is not None:
            ids.add(event.entity_id)
        if ids:
            await service.invalidate_entities("folder", ids)
        await service.invalidate_related(
            "folder", event.entity_id, folder_ids=event.data.get("parent_ids", [])
        )
        if event.data.get("files_changed"):
            await service.invalidate_entity_type("file")

    bus.subscribe("file", on_file_event)
    bus.subscribe("folder", on_folder_event)
