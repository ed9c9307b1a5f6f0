"""Cache key registry shared by services and the invalidation layer."""
from typing import Optional


class CacheKeys:
    SEPARATOR = ":"

    FILE_PREFIX = "file"
    FOLDER_PREFIX = "folder"
    SEARCH_PREFIX = "search"

    FILES_RECENT = "file:recent"
    FILE_STATISTICS = "file:statistics"
    FOLDER_TREE = "folder:tree"

    @staticmethod
    def file_by_id(file_id: int) -> str:
        return f"file:id:{file_id}"

    @staticmethod
    def files_by_folder(folder_id: Optional[int]) -> str:
        return f"file:folder:{folder_id if folder_id is not None else 'root'}"

    @staticmethod
    def folder_by_id(folder_id: int) -> str:
        return f"folder:id:{folder_id}"

    @staticmethod
    def folder_tree(root_id: Optional[int] = None) -> str:
        if root_id is None:
            return CacheKeys.FOLDER_TREE
        return f"{CacheKeys.FOLDER_TREE}:{root_id}"

    @staticmethod
    def folders_by_parent(parent_id: Optional[int]) -> str:
        return f"folder:parent:{parent_id if parent_id is not None else 'root'}"

    @staticmethod
    def pattern(prefix: str) -> str:
        return f"{prefix}:*"

    @staticmethod
    def custom(prefix: str, *identifiers) -> str:
        return CacheKeys.SEPARATOR.join([prefix, *[str(i) for i in identifiers]])
