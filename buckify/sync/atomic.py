"""Atomic file replacement: write a sibling temp file, then rename over the target."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def atomic_write_bytes(path: Path, content: bytes) -> None:
    """Replace ``path`` with ``content`` so readers never see a partial file.

    The temporary file lives in the target directory so ``os.replace`` stays
    on one filesystem. On failure the temporary file is removed and the
    original file is left as it was.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            os.chmod(tmp_name, path.stat().st_mode & 0o777)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def atomic_write_text(path: Path, content: str) -> None:
    """UTF-8 text with ``\\n`` line endings, written via :func:`atomic_write_bytes`."""
    atomic_write_bytes(path, content.encode("utf-8"))
