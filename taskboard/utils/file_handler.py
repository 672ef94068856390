import re
import time
import uuid
import logging
import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import AsyncIterator, Iterable, Optional

import aiofiles
import aiofiles.os

from taskboard.core.config import settings
from taskboard.core.exceptions import NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class StoredFile:
    stored_name: str
    storage_path: str
    size: int


class AttachmentStore(ABC):
    """Persistence for raw attachment bytes, addressed by store-relative paths"""

    @abstractmethod
    async def put(self, content: bytes, declared_name: str) -> StoredFile:
        ...

    @abstractmethod
    async def exists(self, storage_path: str) -> bool:
        ...

    @abstractmethod
    async def delete(self, storage_path: str) -> None:
        ...

    @abstractmethod
    async def open_for_read(self, storage_path: str) -> AsyncIterator[bytes]:
        ...


def generate_stored_name(declared_name: str) -> str:
    """Build a collision-resistant, filesystem-safe storage key from a user filename"""
    path = PurePosixPath(declared_name.replace("\\", "/"))
    extension = _UNSAFE_CHARS.sub("", path.suffix.lower())[:16]
    stem = _UNSAFE_CHARS.sub("_", path.stem).strip("._")[:50] or "file"
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}-{stem}{extension}"


class LocalAttachmentStore(AttachmentStore):
    """Stores attachments on the local filesystem below ``root``"""

    max_key_attempts = 5

    def __init__(self, root: Optional[str] = None, subdirectory: str = "tasks"):
        self.root = Path(root or settings.UPLOAD_PATH).resolve()
        self.subdirectory = subdirectory

    def _resolve(self, storage_path: str) -> Optional[Path]:
        full_path = (self.root / storage_path.lstrip("/")).resolve()
        # Security check: ensure file is within the upload root
        if self.root not in full_path.parents:
            logger.warning(f"Rejected storage path outside upload root: {storage_path}")
            return None
        return full_path

    async def put(self, content: bytes, declared_name: str) -> StoredFile:
        target_dir = self.root / self.subdirectory
        try:
            await aiofiles.os.makedirs(target_dir, exist_ok=True)
        except OSError as e:
            logger.error(f"Error creating upload directory {target_dir}: {e}")
            raise StorageError("Failed to save file")

        for _ in range(self.max_key_attempts):
            stored_name = generate_stored_name(declared_name)
            file_path = target_dir / stored_name
            try:
                # Exclusive create: an existing key is never overwritten
                async with aiofiles.open(file_path, "xb") as f:
                    await f.write(content)
            except FileExistsError:
                continue
            except OSError as e:
                logger.error(f"Error saving file {declared_name}: {e}")
                if file_path.exists():
                    file_path.unlink()  # Clean up on error
                raise StorageError("Failed to save file")

            storage_path = f"{self.subdirectory}/{stored_name}"
            logger.info(f"Stored attachment {declared_name!r} as {storage_path}")
            return StoredFile(stored_name=stored_name, storage_path=storage_path, size=len(content))

        raise StorageError("Failed to allocate a unique storage key")

    async def exists(self, storage_path: str) -> bool:
        full_path = self._resolve(storage_path)
        if full_path is None:
            return False
        return await aiofiles.os.path.isfile(full_path)

    async def delete(self, storage_path: str) -> None:
        full_path = self._resolve(storage_path)
        if full_path is None:
            return
        try:
            await aiofiles.os.remove(full_path)
            logger.info(f"Successfully deleted file: {storage_path}")
        except FileNotFoundError:
            logger.debug(f"File already absent: {storage_path}")
        except OSError as e:
            logger.error(f"Error deleting file {storage_path}: {e}")
            raise StorageError("Failed to delete file")

    async def open_for_read(self, storage_path: str) -> AsyncIterator[bytes]:
        full_path = self._resolve(storage_path)
        if full_path is None or not await aiofiles.os.path.isfile(full_path):
            raise NotFoundError("File not found on server")
        return self._iter_file(full_path)

    @staticmethod
    async def _iter_file(full_path: Path) -> AsyncIterator[bytes]:
        async with aiofiles.open(full_path, "rb") as f:
            while True:
                chunk = await f.read(CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk


class UploadValidator:
    """Type and size checks applied to every upload before anything is stored"""

    def __init__(
        self,
        allowed_extensions: Optional[Iterable[str]] = None,
        allowed_mime_types: Optional[Iterable[str]] = None,
        max_file_size: Optional[int] = None,
    ):
        self.allowed_extensions = {
            ext.lower() for ext in (allowed_extensions if allowed_extensions is not None else settings.ALLOWED_EXTENSIONS)
        }
        self.allowed_mime_types = set(
            allowed_mime_types if allowed_mime_types is not None else settings.ALLOWED_MIME_TYPES
        )
        self.max_file_size = settings.MAX_FILE_SIZE if max_file_size is None else max_file_size

    def resolve_mime_type(self, filename: str, content_type: Optional[str]) -> str:
        if content_type and content_type != "application/octet-stream":
            return content_type
        return mimetypes.guess_type(filename)[0] or "application/octet-stream"

    def validate(self, filename: Optional[str], content_type: Optional[str], size: int) -> str:
        """Validate one upload and return its effective mime type"""
        if not filename:
            raise ValidationError("No filename provided")

        mime_type = self.resolve_mime_type(filename, content_type)
        extension = Path(filename).suffix.lower()

        # Check by content type first, then fall back to the extension
        if mime_type not in self.allowed_mime_types and extension not in self.allowed_extensions:
            raise ValidationError(f"Unsupported file type: {filename}")

        if size > self.max_file_size:
            raise ValidationError(
                f"File {filename} is too large. Max: {self.max_file_size // (1024 * 1024)}MB"
            )
        return mime_type
