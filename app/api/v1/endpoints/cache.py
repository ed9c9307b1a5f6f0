from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import require_admin_or_dev, require_dev
from app.core.cache_keys import CacheKeys
from app.core.database import get_db
from app.core.redis import RedisClient, get_redis
from app.schemas.base import MessageResponse
from app.schemas.cache import CacheInvalidationResponse, CacheKeysResponse, CacheStatistics, WarmupResponse
from app.schemas.user import CurrentUser
from app.services.cache_invalidation import CacheInvalidationService

router = APIRouter()

KEY_LISTING_LIMIT = 1000


@router.get("/statistics", response_model=CacheStatistics)
async def get_cache_statistics(
    current_user: CurrentUser = Depends(require_admin_or_dev),
    cache: RedisClient = Depends(get_redis)
):
    """Hit/miss counters of the cache client"""
    stats = CacheInvalidationService(cache).get_statistics()
    total_keys = len(await cache.keys("*", limit=KEY_LISTING_LIMIT)) if cache.is_connected else None
    return CacheStatistics(connected=cache.is_connected, total_keys=total_keys, **stats)


@router.post("/statistics/reset", response_model=MessageResponse)
async def reset_cache_statistics(
    current_user: CurrentUser = Depends(require_admin_or_dev),
    cache: RedisClient = Depends(get_redis)
):
    """Zero the cache counters"""
    CacheInvalidationService(cache).reset_statistics()
    return MessageResponse(message="Cache statistics reset")


@router.get("/keys", response_model=CacheKeysResponse)
async def get_cache_keys(
    pattern: str = Query("*"),
    current_user: CurrentUser = Depends(require_admin_or_dev),
    cache: RedisClient = Depends(get_redis)
):
    """Keys matching a glob pattern"""
    keys = sorted(await cache.keys(pattern, limit=KEY_LISTING_LIMIT))
    return CacheKeysResponse(pattern=pattern, count=len(keys), keys=keys)


@router.delete("/all", response_model=CacheInvalidationResponse)
async def clear_all_cache(
    current_user: CurrentUser = Depends(require_dev),
    cache: RedisClient = Depends(get_redis)
):
    """Remove every cache entry (Dev only)"""
    removed = await CacheInvalidationService(cache).clear_all()
    return CacheInvalidationResponse(message="All cache cleared", removed=removed)


@router.delete("/files/{file_id}", response_model=CacheInvalidationResponse)
async def invalidate_file(
    file_id: int,
    current_user: CurrentUser = Depends(require_admin_or_dev),
    cache: RedisClient = Depends(get_redis)
):
    """Drop the cached entry of one file"""
    removed = await CacheInvalidationService(cache).invalidate_entity("file", file_id)
    return CacheInvalidationResponse(message=f"Cache invalidated for file {file_id}", removed=removed)


@router.delete("/files", response_model=CacheInvalidationResponse)
async def invalidate_files(
    current_user: CurrentUser = Depends(require_admin_or_dev),
    cache: RedisClient = Depends(get_redis)
):
    """Drop every file cache entry"""
    removed = await CacheInvalidationService(cache).invalidate_entity_type("file")
    return CacheInvalidationResponse(message="File cache invalidated", removed=removed)


@router.delete("/folders/{folder_id}", response_model=CacheInvalidationResponse)
async def invalidate_folder(
    folder_id: int,
    current_user: CurrentUser = Depends(require_admin_or_dev),
    cache: RedisClient = Depends(get_redis)
):
    """Drop the cached entry of one folder and the folder trees"""
    service = CacheInvalidationService(cache)
    removed = await service.invalidate_entity("folder", folder_id)
    removed += await service.invalidate_by_pattern(f"{CacheKeys.FOLDER_TREE}*")
    return CacheInvalidationResponse(message=f"Cache invalidated for folder {folder_id}", removed=removed)


@router.delete("/folders", response_model=CacheInvalidationResponse)
async def invalidate_folders(
    current_user: CurrentUser = Depends(require_admin_or_dev),
    cache: RedisClient = Depends(get_redis)
):
    """Drop every folder cache entry"""
    removed = await CacheInvalidationService(cache).invalidate_entity_type("folder")
    return CacheInvalidationResponse(message="Folder cache invalidated", removed=removed)


@router.delete("/pattern", response_model=CacheInvalidationResponse)
async def invalidate_pattern(
    pattern: str = Query(""),
    current_user: CurrentUser = Depends(require_admin_or_dev),
    cache: RedisClient = Depends(get_redis)
):
    """Drop keys matching a prefixed pattern; bare wildcards are refused, use /cache/all"""
    removed = await CacheInvalidationService(cache).invalidate_by_pattern(pattern)
    return CacheInvalidationResponse(message=f"Cache invalidated for pattern '{pattern}'", removed=removed)


@router.post("/warmup", response_model=WarmupResponse)
async def warmup_cache(
    current_user: CurrentUser = Depends(require_admin_or_dev),
    cache: RedisClient = Depends(get_redis),
    db: AsyncSession = Depends(get_db)
):
    """Pre-populate frequently read entries"""
    warmed = await CacheInvalidationService(cache).warmup(db)
    return WarmupResponse(message="Cache warmup completed", warmed_keys=warmed)
