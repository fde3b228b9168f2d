from __future__ import annotations

import os
import tempfile
from pathlib import Path

from account.logging import get_logger

logger = get_logger(__name__)


class PathTraversalError(ValueError):
    """Raised when a path escapes the intended base directory."""


def safe_join(base: Path, relative: str) -> Path:
    """Join ``relative`` to ``base`` while preventing path traversal.

    The resulting path must resolve within ``base``; absolute paths or ``..``
    segments that would escape the base directory raise ``PathTraversalError``.
    """

    base_resolved = base.resolve()
    rel_path = Path(relative)
    if rel_path.is_absolute():
        raise PathTraversalError("absolute paths not allowed")

    candidate = (base_resolved / rel_path).resolve()
    if base_resolved in candidate.parents:
        return candidate

    raise PathTraversalError("path traversal detected")


class FilesystemImageStore:
    """Profile images written under ``<root>/profile_images``.

    Objects are served from ``base_url``; the returned URL's last path segment
    is the object name, so a later upload for the same user overwrites it.
    """

    def __init__(self, fs_root: str, base_url: str) -> None:
        self.root = Path(fs_root) / "profile_images"
        self.root.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url.rstrip("/")

    def update_profile(self, obj_name: str, data: bytes, content_type: str) -> str:
        dest = safe_join(self.root, obj_name)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.root), prefix=".upload_", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_path, dest)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.info(
            "profile_image_written",
            obj_name=obj_name,
            content_type=content_type,
            size=len(data),
        )
        return f"{self.base_url}/{obj_name}"

    def delete_profile(self, obj_name: str) -> None:
        target = safe_join(self.root, obj_name)
        try:
            target.unlink()
        except FileNotFoundError:
            logger.info("profile_image_already_absent", obj_name=obj_name)
