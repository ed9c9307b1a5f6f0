import pytest

from app.core.cache_keys import CacheKeys
from app.core.events import DomainEvent
from app.core.redis import RedisClient, SupportsPatternInvalidation
from app.services.cache_invalidation import CacheInvalidationService
from app.utils.exceptions import InvalidOperationError, ValidationError


class KeyValueOnlyCache:
    """Cache without pattern support"""

    async def delete(self, *keys):
        return 0


async def test_invalidate_entity(cache):
    await cache.set(CacheKeys.file_by_id(1), "x")
    await cache.set(CacheKeys.file_by_id(2), "y")

    removed = await CacheInvalidationService(cache).invalidate_entity("file", 1)

    assert removed == 1
    assert not await cache.exists(CacheKeys.file_by_id(1))
    assert await cache.exists(CacheKeys.file_by_id(2))


async def test_invalidate_entity_type_keeps_other_prefixes(cache):
    for key in (CacheKeys.file_by_id(1), CacheKeys.FILES_RECENT, CacheKeys.folder_by_id(1)):
        await cache.set(key, "x")

    removed = await CacheInvalidationService(cache).invalidate_entity_type("file")

    assert removed == 2
    assert await cache.exists(CacheKeys.folder_by_id(1))


@pytest.mark.parametrize("pattern", ["", "   ", "*", "**", "*?*", "?*", "[a-z]*", "download_token:*", "other*"])
async def test_invalidate_by_pattern_rejects_empty_wildcard_and_unscoped(cache, pattern):
    await cache.set(CacheKeys.file_by_id(1), "x")

    with pytest.raises(ValidationError):
        await CacheInvalidationService(cache).invalidate_by_pattern(pattern)
    assert await cache.exists(CacheKeys.file_by_id(1))


async def test_pattern_invalidation_requires_capability():
    service = CacheInvalidationService(KeyValueOnlyCache())

    assert not isinstance(KeyValueOnlyCache(), SupportsPatternInvalidation)
    assert isinstance(RedisClient(), SupportsPatternInvalidation)
    with pytest.raises(InvalidOperationError):
        await service.invalidate_by_pattern("file:*")


async def test_clear_all_and_statistics(cache):
    service = CacheInvalidationService(cache)
    await cache.set(CacheKeys.file_by_id(1), "1")
    await cache.set(CacheKeys.FOLDER_TREE, "1")
    await cache.set("session:abc", "1")
    await cache.get(CacheKeys.file_by_id(1))
    await cache.get("missing")

    stats = service.get_statistics()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_ratio"] == 0.5

    assert await service.clear_all() == 2
    assert await cache.keys("*") == ["session:abc"]
    service.reset_statistics()
    assert service.get_statistics()["hits"] == 0


async def test_file_event_invalidates_related_keys(cache, events):
    keys = [CacheKeys.file_by_id(5), CacheKeys.FILES_RECENT, CacheKeys.FILE_STATISTICS,
            CacheKeys.files_by_folder(3), CacheKeys.FOLDER_TREE, CacheKeys.folder_tree(3)]
    for key in keys:
        await cache.set(key, "x")
    await cache.set(CacheKeys.file_by_id(6), "x")

    await events.publish(DomainEvent("file", "updated", 5, {"folder_ids": [3]}))

    for key in keys:
        assert not await cache.exists(key)
    assert await cache.exists(CacheKeys.file_by_id(6))


async def test_failing_subscriber_does_not_propagate(events):
    called = []

    async def broken(event):
        raise RuntimeError("boom")

    async def recorder(event):
        called.append(event.action)

    events.subscribe("folder", broken)
    events.subscribe("*", recorder)

    await events.publish(DomainEvent("folder", "created", 1))

    assert called == ["created"]


async def test_prefixed_pattern_removes_matching_keys(cache):
    for key in (CacheKeys.FOLDER_TREE, CacheKeys.folder_tree(4), CacheKeys.folder_by_id(4)):
        await cache.set(key, "x")

    removed = await CacheInvalidationService(cache).invalidate_by_pattern("folder:tree*")

    assert removed == 2
    assert await cache.keys("*") == [CacheKeys.folder_by_id(4)]
