"""
Atomic file operations for the file storage backend.

Writes go to a temporary file in the target directory and are then renamed
over the target, so a crash never leaves a half-written state record.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional, Union

from loguru import logger


def atomic_write_text(
    file_path: Union[str, Path],
    content: str,
    encoding: str = 'utf-8',
    mode: int = 0o600
) -> None:
    """
    Write text content to a file atomically.

    Args:
        file_path: Path to the target file
        content: Text content to write
        encoding: Text encoding (default: utf-8)
        mode: File permissions (default: 0o600, state may hold user data)

    Raises:
        OSError: If the write or rename operation fails
    """
    file_path = Path(file_path)
    parent_dir = file_path.parent
    parent_dir.mkdir(parents=True, exist_ok=True)

    temp_path = None
    try:
        fd, temp_path = tempfile.mkstemp(
            dir=parent_dir,
            prefix=f".{file_path.name}.",
            suffix=".tmp",
            text=True
        )
        with os.fdopen(fd, 'w', encoding=encoding) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        os.chmod(temp_path, mode)
        # os.replace is atomic on POSIX
        os.replace(temp_path, str(file_path))
        logger.debug(f"Atomically wrote {len(content)} chars to {file_path}")

    except Exception as e:
        if temp_path and os.path.exists(temp_path):
            try:
                os.unlink(temp_path)
            except OSError:
                pass
        logger.error(f"Failed to atomically write to {file_path}: {e}")
        raise


def atomic_write_json(
    file_path: Union[str, Path],
    data: Any,
    indent: Optional[int] = None
) -> None:
    """Serialize `data` as JSON and write it atomically."""
    atomic_write_text(file_path, json.dumps(data, indent=indent, ensure_ascii=False))


def read_text_if_exists(file_path: Union[str, Path], encoding: str = 'utf-8') -> Optional[str]:
    """Return the file's text, or None when it does not exist."""
    try:
        return Path(file_path).read_text(encoding=encoding)
    except FileNotFoundError:
        return None


def remove_if_exists(file_path: Union[str, Path]) -> bool:
    """Delete a file, ignoring a missing one. Returns True if something was removed."""
    try:
        os.unlink(file_path)
        return True
    except FileNotFoundError:
        return False
