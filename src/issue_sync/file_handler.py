"""File handler module: encoding-aware reads and atomic writes.

Every file the tool persists (issue documents, ``.meta.json``, conflict
records, blocker files) goes through ``write_file_atomic`` so a crash never
leaves a half-written file behind.
"""

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

from charset_normalizer import from_bytes

from .errors import StorageError

logger = logging.getLogger(__name__)


# =============================================================================
# Read
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Reads raw bytes first, then uses charset-normalizer to detect encoding.
    Defaults to UTF-8 for empty files or when detection fails.

    Returns:
        Tuple of (content_string, detected_encoding).

    Raises:
        StorageError: If the file cannot be read.
    """
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise StorageError(f"Cannot read {path}: {exc}") from exc
    if not raw:
        return ("", "utf-8")

    result = from_bytes(raw).best()
    if result is None:
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        # ascii is a strict subset of utf-8
        if encoding == "ascii":
            encoding = "utf-8"
        content = str(result)
    return (content, encoding)


def read_text(path: Path) -> str:
    return read_file_with_encoding(path)[0]


# =============================================================================
# Write
# =============================================================================


def write_file_atomic(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Write content through a temp file and ``os.replace``.

    Parent directories are created as needed.

    Returns:
        Number of bytes written.

    Raises:
        StorageError: If the file cannot be written.
    """
    encoded = content.encode(encoding)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
        )
    except OSError as exc:
        raise StorageError(f"Cannot write {path}: {exc}") from exc
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(encoded)
        os.replace(tmp_path, str(path))
    except OSError as exc:
        Path(tmp_path).unlink(missing_ok=True)
        raise StorageError(f"Cannot write {path}: {exc}") from exc
    logger.debug("Wrote %d bytes to %s", len(encoded), path)
    return len(encoded)


def read_json(path: Path) -> Any:
    """Load a JSON file; ``None`` when the file does not exist.

    Raises:
        StorageError: If the file exists but is unreadable or invalid.
    """
    if not path.exists():
        return None
    try:
        return json.loads(read_text(path))
    except json.JSONDecodeError as exc:
        raise StorageError(f"Corrupt JSON in {path}: {exc}") from exc


def write_json_atomic(path: Path, data: Any) -> int:
    return write_file_atomic(
        path, json.dumps(data, indent=2, sort_keys=True) + "\n"
    )


def remove_path(path: Path) -> None:
    """Delete a file or a whole directory tree.

    Raises:
        StorageError: If deletion fails.
    """
    try:
        if path.is_dir():
            shutil.rmtree(path)
        elif path.exists():
            path.unlink()
    except OSError as exc:
        raise StorageError(f"Cannot remove {path}: {exc}") from exc
    logger.debug("Removed %s", path)
