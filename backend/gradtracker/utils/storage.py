"""On-disk storage for uploaded document bytes.

Files live under `<root>/<owner_id>/` with a random prefix so two
uploads with the same name never collide. Bytes are written to a temp
file first and moved into place, so a reader never sees a partial file.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from uuid import uuid4

_LOGGER = logging.getLogger("gradtracker.storage")
_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|]')


def safe_file_name(original: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", original).strip()
    return cleaned or "file"


class DocumentStorage:
    """Write, locate and remove stored document files."""

    def __init__(self, root: Path):
        self.root = Path(root).expanduser().resolve()

    def owner_dir(self, owner_id: int) -> Path:
        return self.root / str(owner_id)

    def save(self, owner_id: int, original_name: str, payload: bytes) -> str:
        """Persist `payload` and return its absolute path as a string."""
        user_dir = self.owner_dir(owner_id)
        tmp_dir = user_dir / "tmp"
        tmp_dir.mkdir(parents=True, exist_ok=True)
        target = user_dir / f"{uuid4().hex}_{safe_file_name(original_name)}"
        fd, tmp_name = tempfile.mkstemp(dir=tmp_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
            os.replace(tmp_name, target)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        _LOGGER.info("stored upload owner=%s bytes=%d path=%s", owner_id, len(payload), target.name)
        return str(target)

    def resolve(self, path: str) -> Path:
        """Return `path` as a `Path` if it lies inside the storage root."""
        candidate = Path(path).resolve()
        if self.root != candidate and self.root not in candidate.parents:
            raise FileNotFoundError(path)
        return candidate

    def discard(self, path: str | None) -> bool:
        """Delete a stored file; failures are logged and reported as False."""
        if not path:
            return False
        try:
            Path(path).unlink(missing_ok=True)
            return True
        except OSError as exc:
            _LOGGER.warning("failed to delete stored file %s: %s", path, exc)
            return False
