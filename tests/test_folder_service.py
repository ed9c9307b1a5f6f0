import pytest

from app.core.cache_keys import CacheKeys
from app.schemas.file import FileUploadOptions
from app.schemas.folder import FolderCreate, FolderType
from app.services.file import FileService
from app.services.folder import FolderService, build_path
from app.utils.exceptions import InvalidOperationError, NotFoundError, ValidationError

from conftest import PDF_BYTES


async def make_folder(service: FolderService, name: str, parent_id=None):
    return await service.create_folder(FolderCreate(name=name, parent_folder_id=parent_id), user_id=1)


def test_build_path():
    assert build_path(None, "Docs") == "Docs"
    assert build_path("Archive", "Docs") == "Archive/Docs"
    with pytest.raises(ValidationError):
        build_path("a" * 1020, "overflow")


async def test_create_folder_builds_path(db):
    service = FolderService(db)
    archive = await make_folder(service, "Archive")
    docs = await make_folder(service, "Docs", archive.id)

    assert archive.path == "Archive"
    assert docs.path == "Archive/Docs"
    assert docs.parent_folder_id == archive.id


async def test_create_folder_rejects_duplicate_sibling_name(db):
    service = FolderService(db)
    await make_folder(service, "Reports")

    with pytest.raises(ValidationError):
        await make_folder(service, "reports")


async def test_create_folder_requires_existing_parent(db):
    with pytest.raises(ValidationError):
        await make_folder(FolderService(db), "Orphan", parent_id=999)


async def test_move_folder_rewrites_subtree_paths(db):
    service = FolderService(db)
    docs = await make_folder(service, "Docs")
    reports = await make_folder(service, "Reports", docs.id)
    q1 = await make_folder(service, "Q1", reports.id)
    archive = await make_folder(service, "Archive")

    await service.move_folder(docs.id, archive.id)

    assert (await service.get_folder(docs.id)).path == "Archive/Docs"
    assert (await service.get_folder(reports.id)).path == "Archive/Docs/Reports"
    assert (await service.get_folder(q1.id)).path == "Archive/Docs/Reports/Q1"


async def test_move_folder_into_itself_or_descendant_fails(db):
    service = FolderService(db)
    parent = await make_folder(service, "Parent")
    child = await make_folder(service, "Child", parent.id)
    grandchild = await make_folder(service, "Grandchild", child.id)

    with pytest.raises(InvalidOperationError):
        await service.move_folder(parent.id, parent.id)
    with pytest.raises(InvalidOperationError):
        await service.move_folder(parent.id, grandchild.id)

    assert (await service.get_folder(parent.id)).parent_folder_id is None
    assert (await service.get_folder(grandchild.id)).path == "Parent/Child/Grandchild"


async def test_move_folder_rejects_name_clash_in_destination(db):
    service = FolderService(db)
    first = await make_folder(service, "First")
    await make_folder(service, "Shared", first.id)
    second = await make_folder(service, "Second")
    shared = await make_folder(service, "Shared", second.id)

    with pytest.raises(ValidationError):
        await service.move_folder(shared.id, first.id)


async def test_move_folder_is_all_or_nothing(db):
    service = FolderService(db)
    top = await make_folder(service, "Top")
    deep = await make_folder(service, "d" * 200, top.id)
    await make_folder(service, "e" * 200, deep.id)
    target = await make_folder(service, "t" * 250)
    target = await make_folder(service, "u" * 250, target.id)
    target = await make_folder(service, "v" * 250, target.id)
    top_id, deep_id, target_id = top.id, deep.id, target.id

    # Target path is ~752 chars, the moved subtree would exceed 1024
    with pytest.raises(ValidationError):
        await service.move_folder(top_id, target_id)

    top_after = await service.get_folder(top_id)
    deep_after = await service.get_folder(deep_id)
    assert top_after.parent_folder_id is None
    assert top_after.path == "Top"
    assert deep_after.path == f"Top/{'d' * 200}"


async def test_rename_folder(db):
    service = FolderService(db)
    docs = await make_folder(service, "Docs")
    child = await make_folder(service, "Child", docs.id)
    await make_folder(service, "Taken")

    assert await service.rename_folder(docs.id, "Documents") is True
    assert (await service.get_folder(child.id)).path == "Documents/Child"

    assert await service.rename_folder(docs.id, "taken") is False
    assert await service.rename_folder(docs.id, "bad/name") is False
    with pytest.raises(NotFoundError):
        await service.rename_folder(999, "Anything")


async def test_delete_non_empty_folder_requires_cascade(db):
    service = FolderService(db)
    docs = await make_folder(service, "Docs")
    child = await make_folder(service, "Child", docs.id)
    uploaded = await FileService(db).create_file(
        "a.pdf", "application/pdf", PDF_BYTES, FileUploadOptions(folder_id=child.id), user_id=1
    )

    with pytest.raises(InvalidOperationError):
        await service.delete_folder(docs.id)

    assert await service.delete_folder(docs.id, delete_files=True) is True
    assert not await service.folder_exists(docs.id)
    assert not await service.folder_exists(child.id)
    with pytest.raises(NotFoundError):
        await FileService(db).get_file(uploaded.id)


async def test_delete_empty_folder(db):
    service = FolderService(db)
    empty = await make_folder(service, "Empty")

    assert await service.delete_folder(empty.id) is True
    with pytest.raises(NotFoundError):
        await service.get_folder(empty.id)


async def test_system_folder_is_idempotent_and_protected(db):
    service = FolderService(db)
    first = await service.get_or_create_system_folder(FolderType.COMPANY_ASSETS)
    second = await service.get_company_assets_folder()

    assert first.id == second.id
    assert first.is_system_folder
    with pytest.raises(InvalidOperationError):
        await service.delete_folder(first.id, delete_files=True)


async def test_user_avatar_folder(db):
    service = FolderService(db)
    folder = await service.get_user_avatar_folder(42)
    again = await service.get_user_avatar_folder(42)

    assert folder.id == again.id
    assert folder.path == "UserAvatars/user_42"
    assert folder.is_public is False


async def test_copy_folder_deep_copies_files(db):
    service = FolderService(db)
    source = await make_folder(service, "Source")
    nested = await make_folder(service, "Nested", source.id)
    await FileService(db).create_file(
        "a.pdf", "application/pdf", PDF_BYTES, FileUploadOptions(folder_id=nested.id), user_id=1
    )

    copy = await service.copy_folder(source.id, None, user_id=1)

    assert copy.name == "Copy of Source"
    assert copy.path == "Copy of Source"
    copied_children = await service.get_folders(copy.id)
    assert [c.name for c in copied_children] == ["Nested"]
    copied_files = await FileService(db).get_files_by_folder(copied_children[0].id)
    assert [f.original_file_name for f in copied_files] == ["a.pdf"]


async def test_breadcrumbs_and_ancestors(db):
    service = FolderService(db)
    a = await make_folder(service, "A")
    b = await make_folder(service, "B", a.id)
    c = await make_folder(service, "C", b.id)

    assert [f.id for f in await service.get_ancestors(c.id)] == [b.id, a.id]
    crumbs = await service.get_breadcrumbs(c.id)
    assert [crumb.name for crumb in crumbs] == ["A", "B", "C"]
    assert crumbs[-1].is_last and not crumbs[0].is_last
    assert await service.is_subfolder_of(c.id, a.id)
    assert not await service.is_subfolder_of(a.id, c.id)


async def test_get_folder_by_path(db):
    service = FolderService(db)
    archive = await make_folder(service, "Archive")
    docs = await make_folder(service, "Docs", archive.id)

    assert (await service.get_folder_by_path("/Archive/Docs/")).id == docs.id
    assert await service.get_folder_by_path("Archive/Missing") is None


async def test_folder_tree_is_cached_and_invalidated(db, cache):
    service = FolderService(db)
    root = await make_folder(service, "Root1")
    await make_folder(service, "Leaf", root.id)

    tree = await service.get_folder_tree()
    assert tree.id == 0
    assert [node.name for node in tree.sub_folders] == ["Root1"]
    assert tree.sub_folders[0].sub_folders[0].level == 2
    assert await cache.exists(CacheKeys.FOLDER_TREE)

    await make_folder(service, "Root2")
    assert not await cache.exists(CacheKeys.FOLDER_TREE)


async def test_validate_folder_name(db):
    service = FolderService(db)
    existing = await make_folder(service, "Existing")

    assert await service.validate_folder_name("Fresh")
    assert not await service.validate_folder_name("existing")
    assert await service.validate_folder_name("Existing", exclude_folder_id=existing.id)
    assert not await service.validate_folder_name("a:b")
