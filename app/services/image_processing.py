from typing import Optional, Tuple
import io
import logging

from PIL import Image, UnidentifiedImageError

from app.core.config import settings

logger = logging.getLogger(__name__)


class ImageProcessingService:
    """Pillow based thumbnailing and image probing (blocking, run in a thread)"""

    def __init__(self, quality: Optional[int] = None):
        self.quality = quality or settings.IMAGE_QUALITY

    def get_dimensions(self, content: bytes) -> Optional[Tuple[int, int]]:
        try:
            with Image.open(io.BytesIO(content)) as image:
                return image.size
        except (UnidentifiedImageError, OSError, ValueError):
            return None

    def generate_thumbnail(self, content: bytes, width: Optional[int] = None,
                           height: Optional[int] = None) -> Optional[bytes]:
        """JPEG thumbnail that fits inside width x height, keeping the aspect ratio"""
        width = width or settings.THUMBNAIL_WIDTH
        height = height or settings.THUMBNAIL_HEIGHT
        try:
            with Image.open(io.BytesIO(content)) as image:
                image.thumbnail((width, height))
                if image.mode not in ("RGB", "L"):
                    image = image.convert("RGB")
                output = io.BytesIO()
                image.save(output, format="JPEG", quality=self.quality)
                return output.getvalue()
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.warning(f"Thumbnail generation failed: {e}")
            return None

    def validate_image(self, content: bytes) -> dict:
        if not content:
            return {"is_valid": False, "error": "No content"}
        try:
            with Image.open(io.BytesIO(content)) as image:
                image.verify()
            with Image.open(io.BytesIO(content)) as image:
                return {
                    "is_valid": True,
                    "format": image.format,
                    "width": image.width,
                    "height": image.height,
                    "mode": image.mode,
                }
        except (UnidentifiedImageError, OSError, ValueError) as e:
            return {"is_valid": False, "error": str(e)}


image_processor = ImageProcessingService()
