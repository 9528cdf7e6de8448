"""
File storage abstraction.

Provides a simple object-store interface for community uploads.
Currently uses local filesystem; keys are flat names inside a bucket
directory and are never overwritten.
"""
from pathlib import Path
import shutil
from typing import BinaryIO

from domain.errors import RemoteWriteError


class FileStorage:
    """
    Local object storage implementation.

    Files are organized as:
    - media/{bucket}/{object_key}  - Watermarked community photos
    """

    def __init__(self, media_root: str = "media", bucket: str = "images"):
        self.media_root = Path(media_root)
        self.bucket = bucket
        self.media_root.mkdir(parents=True, exist_ok=True)

    def get_bucket_dir(self) -> Path:
        """Get the directory backing the bucket."""
        path = self.media_root / self.bucket
        path.mkdir(parents=True, exist_ok=True)
        return path

    def save_object(self, key: str, file: BinaryIO) -> str:
        """
        Store an object under `key`.

        Args:
            key: Object key (a bare file name)
            file: File-like object with the data

        Returns:
            Relative path to the saved file

        Raises:
            RemoteWriteError: the key is invalid, already taken, or the write failed
        """
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise RemoteWriteError(f"invalid object key: {key!r}")
        file_path = self.get_bucket_dir() / key
        try:
            # "xb" refuses to replace an existing object
            with open(file_path, "xb") as f:
                shutil.copyfileobj(file, f)
        except FileExistsError as exc:
            raise RemoteWriteError(f"object already exists: {key}") from exc
        except OSError as exc:
            raise RemoteWriteError(f"failed to store {key}: {exc}") from exc
        return str(file_path.relative_to(self.media_root))

    def object_path(self, key: str) -> str:
        """Relative path of an object inside the media root."""
        return str(Path(self.bucket) / key)

    def read_object(self, key: str) -> bytes:
        return (self.media_root / self.object_path(key)).read_bytes()

    def file_exists(self, relative_path: str) -> bool:
        """Check if a file exists."""
        return (self.media_root / relative_path).exists()

    def delete_object(self, key: str) -> bool:
        """Delete an object. Returns True if deleted."""
        path = self.media_root / self.object_path(key)
        if path.exists():
            path.unlink()
            return True
        return False
