"""Content-hash gated file writes."""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable

LOG = logging.getLogger("bind9_operator.writer")

MISSING_FILE_DIGEST = "-1"

Normalizer = Callable[[str], str]


def _digest(content: str, normalizer: Normalizer | None) -> str:
    """Return the SHA-256 hex digest of the normalized content."""
    if normalizer is not None:
        content = normalizer(content)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def file_digest(path: Path, normalizer: Normalizer | None = None) -> str:
    """Return the digest of an existing file, or a sentinel when it is missing."""
    if not path.exists():
        return MISSING_FILE_DIGEST
    return _digest(path.read_text(encoding="utf-8"), normalizer)


def write_atomic(path: Path, content: str, permissions: int | None = None) -> None:
    """Replace ``path`` with ``content`` so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        if permissions is not None:
            os.chmod(tmp_name, permissions)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def conditional_update(
    content: str,
    dest: Path,
    normalizer: Normalizer | None = None,
    permissions: int | None = None,
) -> bool:
    """Write ``content`` to ``dest`` only when the normalized digests differ.

    Returns True when the file was written. The normalizer is applied to both
    the new content and the existing file, so substrings it masks (such as a
    zone serial) never count as a change. When nothing changed, ``permissions``
    is still enforced on the existing file.
    """
    if _digest(content, normalizer) != file_digest(dest, normalizer):
        LOG.debug("Updating %s", dest)
        write_atomic(dest, content, permissions)
        return True

    if permissions is not None:
        os.chmod(dest, permissions)
    return False
