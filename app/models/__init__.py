from app.models.folder import Folder
from app.models.file import FileEntity, FileAccess
from app.models.indexing import IndexingJob, SearchIndex

__all__ = ["Folder", "FileEntity", "FileAccess", "IndexingJob", "SearchIndex"]
