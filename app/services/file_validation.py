"""Upload validation: size, extension, content type family and magic bytes."""
from datetime import datetime, timezone
from typing import Dict, List, Optional
import os
import re
import uuid

from app.core.config import settings
from app.schemas.file import FileType
from app.utils.exceptions import ValidationError

FILE_SIGNATURES: Dict[str, List[bytes]] = {
    ".jpg": [b"\xff\xd8\xff"],
    ".jpeg": [b"\xff\xd8\xff"],
    ".png": [b"\x89PNG\r\n\x1a\n"],
    ".gif": [b"GIF8"],
    ".webp": [b"RIFF"],
    ".bmp": [b"BM"],
    ".pdf": [b"%PDF"],
    ".docx": [b"PK\x03\x04", b"PK\x07\x08"],
    ".xlsx": [b"PK\x03\x04", b"PK\x07\x08"],
    ".pptx": [b"PK\x03\x04", b"PK\x07\x08"],
    ".doc": [b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"],
    ".xls": [b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"],
    ".ppt": [b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"],
    ".rtf": [b"{\\rtf"],
    ".zip": [b"PK\x03\x04", b"PK\x05\x06", b"PK\x07\x08"],
    ".rar": [b"Rar!\x1a\x07"],
    ".7z": [b"7z\xbc\xaf\x27\x1c"],
    ".gz": [b"\x1f\x8b\x08"],
    ".flac": [b"fLaC"],
    ".ogg": [b"OggS"],
    ".wav": [b"RIFF"],
    ".webm": [b"\x1a\x45\xdf\xa3"],
}

EXECUTABLE_SIGNATURES = (
    b"MZ",                # PE
    b"\x7fELF",           # ELF
    b"\xfe\xed\xfa\xce",  # Mach-O 32-bit
    b"\xfe\xed\xfa\xcf",  # Mach-O 64-bit
)

EXTENSION_TYPES: Dict[FileType, set] = {
    FileType.IMAGE: {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".svg", ".ico", ".tiff"},
    FileType.DOCUMENT: {".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".txt", ".csv", ".rtf", ".odt"},
    FileType.VIDEO: {".mp4", ".avi", ".mov", ".wmv", ".flv", ".webm", ".mkv"},
    FileType.AUDIO: {".mp3", ".wav", ".ogg", ".flac", ".aac", ".m4a"},
    FileType.ARCHIVE: {".zip", ".rar", ".7z", ".tar", ".gz"},
}

CONTENT_TYPE_PREFIXES: Dict[FileType, tuple] = {
    FileType.IMAGE: ("image/",),
    FileType.VIDEO: ("video/",),
    FileType.AUDIO: ("audio/",),
}

INVALID_NAME_CHARACTERS = set('\\/:*?"<>|')


def get_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lower()


def get_file_type(filename: str, content_type: Optional[str] = None) -> FileType:
    """Classify by extension first, then by content type"""
    extension = get_extension(filename)
    for file_type, extensions in EXTENSION_TYPES.items():
        if extension in extensions:
            return file_type
    content_type = (content_type or "").lower()
    for file_type, prefixes in CONTENT_TYPE_PREFIXES.items():
        if content_type.startswith(prefixes):
            return file_type
    return FileType.OTHER


def has_valid_signature(content: bytes, extension: str) -> bool:
    signatures = FILE_SIGNATURES.get(extension)
    if not signatures:
        return True
    return any(content.startswith(signature) for signature in signatures)


def validate_file_name(name: str) -> bool:
    name = (name or "").strip()
    if not name or len(name) > 255 or name in (".", ".."):
        return False
    return not any(ch in INVALID_NAME_CHARACTERS for ch in name)


def validate_upload(filename: str, content_type: Optional[str], content: bytes) -> FileType:
    """Validate an upload and return its FileType, raises ValidationError"""
    if not filename or not validate_file_name(os.path.basename(filename)):
        raise ValidationError("Invalid file name")
    if not content:
        raise ValidationError("File is empty")
    if len(content) > settings.MAX_FILE_SIZE_BYTES:
        raise ValidationError(f"File size exceeds the maximum allowed size of {settings.MAX_FILE_SIZE_MB} MB")

    extension = get_extension(filename)
    if extension not in settings.ALLOWED_EXTENSIONS:
        raise ValidationError(f"File extension '{extension or '(none)'}' is not allowed")

    file_type = get_file_type(filename)
    declared = (content_type or "").lower()
    prefixes = CONTENT_TYPE_PREFIXES.get(file_type)
    if prefixes and declared and declared != "application/octet-stream" and not declared.startswith(prefixes):
        raise ValidationError(f"Content type '{content_type}' does not match file extension '{extension}'")

    if content.startswith(EXECUTABLE_SIGNATURES):
        raise ValidationError("Executable content is not allowed")
    if not has_valid_signature(content, extension):
        raise ValidationError(f"File content does not match extension '{extension}'")

    return file_type


def generate_stored_file_name(original_name: str, now: Optional[datetime] = None) -> str:
    """Unique storage name: {clean-name}_{yyyyMMdd_HHmmss}_{8 hex}{ext}"""
    now = now or datetime.now(timezone.utc)
    stem, extension = os.path.splitext(os.path.basename(original_name or "file"))
    clean = re.sub(r"[^A-Za-z0-9_-]+", "_", stem).strip("_")[:100] or "file"
    return f"{clean}_{now:%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:8]}{extension.lower()}"
