"""
Photo storage collaborators.

The capture pipeline asks for the narrowest access scope (add-only) before
handing over encoded bytes. Denied or restricted access is a per-capture
failure, never a crash.
"""

import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from pathlib import Path

from .camera import AuthorizationStatus
from .errors import StorageSaveFailed

logger = logging.getLogger(__name__)


class AccessScope(Enum):
    ADD_ONLY = "add_only"
    READ_WRITE = "read_write"


class PhotoStorage(ABC):
    """Destination for finished photos."""

    @abstractmethod
    def request_authorization(self, scope: AccessScope) -> AuthorizationStatus:
        ...

    @abstractmethod
    def save(self, data: bytes) -> str:
        """
        Persist encoded image bytes.

        Returns:
            Identifier of the stored photo

        Raises:
            StorageSaveFailed: the write was rejected or failed
        """


class DirectoryPhotoStorage(PhotoStorage):
    """
    Writes JPEG files into a directory.

    Add-only: files are created exclusively and never overwritten.
    """

    def __init__(self, output_dir: Path, prefix: str = "capture", extension: str = ".jpg"):
        self.output_dir = Path(output_dir)
        self.prefix = prefix
        self.extension = extension

    def request_authorization(self, scope: AccessScope) -> AuthorizationStatus:
        if scope != AccessScope.ADD_ONLY:
            return AuthorizationStatus.RESTRICTED
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Cannot create photo directory %s: %s", self.output_dir, e)
            return AuthorizationStatus.DENIED
        if not os.access(self.output_dir, os.W_OK):
            return AuthorizationStatus.DENIED
        return AuthorizationStatus.AUTHORIZED

    def _next_path(self) -> Path:
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        path = self.output_dir / f"{self.prefix}_{stamp}{self.extension}"
        counter = 1
        while path.exists():
            path = self.output_dir / f"{self.prefix}_{stamp}_{counter}{self.extension}"
            counter += 1
        return path

    def save(self, data: bytes) -> str:
        path = self._next_path()
        try:
            with open(path, "xb") as f:
                f.write(data)
        except OSError as e:
            raise StorageSaveFailed(f"Failed to save photo: {e}", details={"path": str(path)}) from e
        logger.info("Saved photo to %s (%d bytes)", path, len(data))
        return str(path)
