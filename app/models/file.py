from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, BigInteger, Text, Boolean, Float, JSON, LargeBinary
from sqlalchemy.orm import deferred

from app.core.database import Base, utcnow


class FileEntity(Base):
    __tablename__ = "files"

    id = Column(Integer, primary_key=True, index=True)
    original_file_name = Column(String(255), nullable=False)
    stored_file_name = Column(String(255), nullable=False, unique=True)
    content_type = Column(String(100), nullable=False)
    file_extension = Column(String(20), nullable=True)
    file_type = Column(String(20), nullable=False, default="Other")  # FileType
    file_size = Column(BigInteger, nullable=False)

    # Binary payloads are only loaded on demand
    file_content = deferred(Column(LargeBinary, nullable=True), raiseload=True)
    thumbnail_content = deferred(Column(LargeBinary, nullable=True), raiseload=True)

    # Content digest (base64 SHA-256)
    hash = Column(String(128), nullable=True, index=True)

    # Optional metadata
    description = Column(Text, nullable=True)
    alt = Column(String(255), nullable=True)
    tags = Column(JSON, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    duration = Column(Float, nullable=True)

    # Organization
    folder_id = Column(Integer, ForeignKey("folders.id"), nullable=True, index=True)
    is_public = Column(Boolean, nullable=False, default=False)

    # Processing
    is_processed = Column(Boolean, nullable=False, default=True)
    processing_status = Column(String(20), nullable=False, default="Completed")  # ProcessingStatus

    # Usage
    download_count = Column(Integer, nullable=False, default=0)
    last_accessed_at = Column(DateTime(timezone=True), nullable=True)

    # Soft delete
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Owner
    created_by_user_id = Column(Integer, nullable=True, index=True)
    updated_by_user_id = Column(Integer, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)


class FileAccess(Base):
    __tablename__ = "file_accesses"

    id = Column(Integer, primary_key=True, index=True)
    file_id = Column(Integer, ForeignKey("files.id"), nullable=False, index=True)
    user_id = Column(Integer, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    access_type = Column(String(20), nullable=False)  # FileAccessType
    accessed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
