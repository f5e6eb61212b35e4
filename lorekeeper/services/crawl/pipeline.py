from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Any, Optional

logger = logging.getLogger(__name__)


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def render_json(obj: Any) -> str:
    """Stable, human-readable JSON: 2-space indent, key order kept, trailing newline.

    Callers pass already-sorted lists and dicts so equal data renders to equal text.
    """
    return json.dumps(obj, ensure_ascii=False, indent=2) + "\n"


def read_text(path: str) -> Optional[str]:
    if not os.path.isfile(path):
        return None
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def write_atomic(path: str, content: str) -> None:
    """Write the whole document to a temp file beside ``path`` and rename it into place."""
    directory = os.path.dirname(os.path.abspath(path))
    ensure_dir(directory)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def write_if_changed(path: str, content: str) -> bool:
    """Write ``content`` unless the file already holds exactly that text.

    Returns True when the file was (re)written. An existing file that is not
    valid UTF-8 counts as different and is replaced.
    """
    try:
        existing = read_text(path)
    except UnicodeDecodeError as exc:
        logger.warning("artifact unreadable, replacing path=%s error=%s", path, exc)
        existing = None
    if existing == content:
        logger.info("artifact unchanged path=%s", path)
        return False
    write_atomic(path, content)
    logger.info("artifact updated path=%s", path)
    return True
