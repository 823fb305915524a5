"""File helpers: atomic JSON writes and tolerant JSON loads.

Writes go to ``<target>.tmp`` beside the real target and are renamed
over it, so readers (including peer CLIs running concurrently) never see
a partial file. Symlinks are resolved first and left in place.
"""

import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any

from codex_quota.errors import IoError, ParseError

logger = logging.getLogger(__name__)

SECURE_MODE = 0o600


def _safe_replace(src: str, dst: str, *, retries: int = 3, delay: float = 0.1):
    """os.replace() with retry for Windows PermissionError.

    On Windows, os.replace() can fail if the target file is held open
    by another process.  Retries with exponential backoff.
    """
    for attempt in range(retries):
        try:
            os.replace(src, dst)
            return
        except PermissionError:
            if sys.platform != "win32" or attempt == retries - 1:
                raise
            time.sleep(delay * (2 ** attempt))


def resolve_write_target(path: Path) -> Path:
    """Return the file a write to ``path`` should land on.

    Follows symlinks (including chains and dangling links) so the link
    itself survives the rename.
    """
    path = Path(path)
    if not path.is_symlink():
        return path
    try:
        return Path(os.path.realpath(path))
    except OSError:
        target = Path(os.readlink(path))
        if not target.is_absolute():
            target = path.parent / target
        return target


def atomic_write(path: Path, payload: bytes, mode: int = SECURE_MODE) -> Path:
    """Write bytes atomically and return the path actually written.

    Raises IoError with the failing op; the previous file is untouched
    on any failure.
    """
    target = resolve_write_target(Path(path))
    tmp = target.with_name(target.name + ".tmp")
    op = "create directory for"
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        op = "write"
        fd = os.open(str(tmp), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        op = "chmod"
        os.chmod(tmp, mode)
        op = "rename"
        _safe_replace(str(tmp), str(target))
    except OSError as exc:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise IoError(target, op, exc) from exc
    logger.debug("Wrote %s (%d bytes)", target, len(payload))
    return target


def dump_json(data: Any) -> bytes:
    """Serialize with 2-space indent and a trailing newline.

    >>> dump_json({"a": 1})
    b'{\\n  "a": 1\\n}\\n'
    """
    return (json.dumps(data, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


def write_json(path: Path, data: Any, mode: int = SECURE_MODE) -> Path:
    return atomic_write(path, dump_json(data), mode)


def load_json(path: Path) -> Any:
    """Load a JSON document. Returns None when the file does not exist.

    Raises ParseError for malformed content (including bytes that are not
    UTF-8) and IoError when the file exists but cannot be read.
    """
    path = Path(path)
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise IoError(path, "read", exc) from exc
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ParseError(path, "invalid UTF-8") from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(path, f"invalid JSON ({exc.msg} at line {exc.lineno})") from exc


def load_json_object(path: Path) -> dict | None:
    """Like load_json, but the root must be a JSON object."""
    data = load_json(path)
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ParseError(path, "expected a JSON object at the root")
    return data
