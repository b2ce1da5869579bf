"""Crash-safe JSON writes for the settings and GameInfo files.

The handheld can lose power at any moment (battery pulled, hard reset), so
every persisted file is written to a sibling ``.tmp`` file, fsynced, and then
renamed over the target. Readers see either the old or the new contents,
never a torn write.
"""

import json
import os
from pathlib import Path
from typing import Any


def atomic_json_write(path: str | Path, data: Any) -> None:
    """Write ``data`` as JSON to ``path`` atomically.

    Errors from serialization or file I/O propagate; the temp file is
    removed first.
    """
    path = Path(path)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w") as f:
            json.dump(data, f)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(path)
    except BaseException:
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise
