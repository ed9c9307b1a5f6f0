from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, Boolean, JSON, Index, text

from app.core.database import Base, utcnow


class Folder(Base):
    __tablename__ = "folders"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Tree structure: nodes reference their parent by id, path is denormalized
    parent_folder_id = Column(Integer, ForeignKey("folders.id"), nullable=True, index=True)
    path = Column(String(1024), nullable=False, default="")

    folder_type = Column(String(32), nullable=False, default="General")  # FolderType
    is_public = Column(Boolean, nullable=False, default=True)
    is_system_folder = Column(Boolean, nullable=False, default=False)
    folder_metadata = Column("metadata", JSON, nullable=True)

    # Soft delete
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Audit
    created_by_user_id = Column(Integer, nullable=True)
    updated_by_user_id = Column(Integer, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    __table_args__ = (
        # One live root system folder per type
        Index(
            "uq_folders_system_type",
            "folder_type",
            unique=True,
            postgresql_where=text("is_system_folder = true AND is_deleted = false"),
            sqlite_where=text("is_system_folder = 1 AND is_deleted = 0"),
        ),
    )
