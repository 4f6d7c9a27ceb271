"""
Upload storage for avatars and trainer plan documents.

Files live under ``UPLOAD_DIR`` and are served by the app at ``/uploads``;
the database only keeps the path relative to that directory.
"""
import io
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from fittrack.core import settings
from fittrack.core.logging_config import get_logger

logger = get_logger("services.uploads")


class ImageService:
    """Service for handling profile picture uploads and management"""

    # Configuration
    SUBDIR = "avatars"
    ALLOWED_EXTENSIONS = {'.jpg', '.jpeg', '.png'}
    MAX_FILE_SIZE = 5 * 1024 * 1024  # 5MB
    TARGET_SIZE = (500, 500)  # Maximum dimensions

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or settings.UPLOAD_DIR)
        self.upload_path = self.root / self.SUBDIR
        self.upload_path.mkdir(parents=True, exist_ok=True)

    def validate_image(self, file_data: bytes, filename: str) -> Tuple[bool, str]:
        """
        Validate image file

        Args:
            file_data: Image file bytes
            filename: Original filename

        Returns:
            Tuple of (is_valid, error_message)
        """
        if len(file_data) > self.MAX_FILE_SIZE:
            return False, f"File size exceeds {self.MAX_FILE_SIZE // (1024*1024)}MB limit"

        ext = Path(filename).suffix.lower()
        if ext not in self.ALLOWED_EXTENSIONS:
            return False, f"Invalid file type. Allowed types: {', '.join(sorted(self.ALLOWED_EXTENSIONS))}"

        try:
            img = Image.open(io.BytesIO(file_data))
            img.verify()
            return True, ""
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            return False, f"Invalid image file: {str(e)}"

    def process_and_save_image(self, file_data: bytes, user_id: int, original_filename: str) -> str:
        """
        Normalise and save an avatar: RGB, center-cropped square, at most TARGET_SIZE.

        Returns:
            Path relative to the upload root
        """
        img = Image.open(io.BytesIO(file_data))

        # Flatten transparency onto white
        if img.mode in ('RGBA', 'LA', 'P'):
            background = Image.new('RGB', img.size, (255, 255, 255))
            if img.mode != 'RGBA':
                img = img.convert('RGBA')
            background.paste(img, mask=img.split()[-1])
            img = background
        elif img.mode != 'RGB':
            img = img.convert('RGB')

        width, height = img.size
        if width != height:
            size = min(width, height)
            left = (width - size) // 2
            top = (height - size) // 2
            img = img.crop((left, top, left + size, top + size))

        if img.size[0] > self.TARGET_SIZE[0]:
            img.thumbnail(self.TARGET_SIZE, Image.Resampling.LANCZOS)

        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        ext = Path(original_filename).suffix.lower()
        filename = f"user_{user_id}_{timestamp}{ext}"
        filepath = self.upload_path / filename

        if ext in ('.jpg', '.jpeg'):
            img.save(filepath, 'JPEG', quality=85, optimize=True)
        else:
            img.save(filepath, 'PNG', optimize=True)

        logger.info(f"Saved avatar for user {user_id}: {filename}")
        return f"{self.SUBDIR}/{filename}"

    def delete_file(self, relative_path: Optional[str]) -> bool:
        """Delete a stored file; missing files count as deleted"""
        if not relative_path:
            return True

        full_path = (self.root / relative_path).resolve()
        if self.root.resolve() not in full_path.parents:
            logger.warning(f"Refusing to delete path outside upload dir: {relative_path}")
            return False
        try:
            full_path.unlink(missing_ok=True)
            return True
        except OSError as e:
            logger.error(f"Error deleting upload {relative_path}: {e}")
            return False

    def get_full_url(self, relative_path: Optional[str], base_url: str) -> Optional[str]:
        if not relative_path:
            return None
        return f"{base_url.rstrip('/')}/uploads/{relative_path}"


class DocumentService(ImageService):
    """Storage for workout and diet plan files (PDF or image)"""

    SUBDIR = "plans"
    ALLOWED_CONTENT_TYPES = {"application/pdf", "image/jpeg", "image/png"}
    MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB

    def validate_document(self, file_data: bytes, content_type: Optional[str]) -> Tuple[bool, str]:
        if not file_data:
            return False, "File is empty"
        if len(file_data) > self.MAX_FILE_SIZE:
            return False, f"File size exceeds {self.MAX_FILE_SIZE // (1024*1024)}MB limit"
        if content_type not in self.ALLOWED_CONTENT_TYPES:
            return False, "Only PDF, JPEG and PNG files are allowed"
        return True, ""

    def save_document(self, file_data: bytes, kind: str, original_filename: str) -> str:
        ext = Path(original_filename).suffix.lower() or ".bin"
        filename = f"{kind}_{uuid.uuid4().hex}{ext}"
        (self.upload_path / filename).write_bytes(file_data)
        logger.info(f"Saved {kind} document: {filename}")
        return f"{self.SUBDIR}/{filename}"
