"""Shared file helpers for persisted index and cache state."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

STATE_FILE_MODE = 0o644


def atomic_write_text(path: Path, text: str, mode: int = STATE_FILE_MODE) -> None:
    """Replace ``path`` with ``text`` without ever exposing a partial file.

    Content goes to a temporary file in the same directory, which is given
    ``mode`` and then moved into place. On failure the temporary file is
    removed and ``path`` is left as it was.
    """
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as tmp:
            tmp.write(text)
        # mkstemp creates files as 0600.
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
