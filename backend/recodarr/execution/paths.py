"""
Output path helpers.

The encoder never writes to the final destination. It writes a sibling
temporary file which the finalization step commits afterwards:

    /media/show/episode.mkv  →  /media/show/episode_tmp.mkv

An existing file at the destination is moved aside to a timestamped
backup while it is replaced:

    /media/show/episode.mkv  →  /media/show/episode.mkv.backup-1718000000000
"""

import time
from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, Path]

TEMP_SUFFIX = "_tmp"
BACKUP_MARKER = ".backup-"


def temp_output_path(final_path: PathLike) -> Path:
    """
    Derive the temporary encoder output for a final target.

    Keeps the extension so the encoder picks the same container.
    """
    final = Path(final_path)
    return final.with_name(f"{final.stem}{TEMP_SUFFIX}{final.suffix}")


def backup_path_for(target_path: PathLike, timestamp_ms: Optional[int] = None) -> Path:
    """Timestamped backup location for a file about to be replaced."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    target = Path(target_path)
    return target.with_name(f"{target.name}{BACKUP_MARKER}{timestamp_ms}")


def file_size(path: PathLike) -> int:
    """Size in bytes, 0 if the file is missing or unreadable."""
    try:
        return Path(path).stat().st_size
    except OSError:
        return 0
