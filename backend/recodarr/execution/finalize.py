"""
Finalization: commit an encoded temp file to its final location.

The encoder writes to a temporary sibling of the final target. Only once
the encode has succeeded is that file moved into place:

1. Validate the temp output exists and is non-empty
2. Overwrite mode: move any existing target aside to a timestamped backup
   (a failed backup is logged, not fatal)
3. Move temp → target, verify the size survived the move
4. Success: delete the backup and any leftover temp artifact
5. Failure: delete the temp output, restore the backup to the target.
   Without a backup, an output that was already moved into place is
   deleted so no partial file is left at the target

Every filesystem step runs under a RetryPolicy.

This function is also the recovery entry point: it can be invoked
directly (HTTP or CLI) to commit an output left behind by an earlier run.
"""

import errno
import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from .errors import FinalizeError, RetryExhaustedError
from .paths import PathLike, backup_path_for, file_size
from .results import FinalizeResult
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

FINALIZE_ERROR_PREFIX = "Finalize error:"


def move_file(src: PathLike, dst: PathLike) -> None:
    """
    Move src over dst.

    Uses an atomic rename when both live on the same filesystem and falls
    back to copy + unlink across devices.
    """
    try:
        os.replace(src, dst)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        shutil.copy2(src, dst)
        os.unlink(src)


def _remove_quietly(path: Path, what: str, job_id: str) -> None:
    try:
        if path.exists():
            path.unlink()
            logger.info(f"[Finalize] {job_id}: removed {what} {path}")
    except OSError as e:
        logger.warning(f"[Finalize] {job_id}: could not remove {what} {path}: {e}")


def _validate_temp(temp: Path) -> None:
    if not temp.is_file():
        raise FinalizeError(f"Temp file missing: {temp}")
    if file_size(temp) == 0:
        raise FinalizeError(f"Temp file is empty: {temp}")


def finalize(
    temp_path: PathLike,
    final_path: PathLike,
    job_id: str,
    is_overwrite: bool,
    original_path: Optional[PathLike] = None,
    retry: Optional[RetryPolicy] = None,
) -> FinalizeResult:
    """
    Commit a temp output to its final path.

    Args:
        temp_path: Encoder output
        final_path: Destination (the input path when overwriting)
        job_id: Owning job, for logging
        is_overwrite: True if final_path holds the original source file
        original_path: Source the output was encoded from (informational)
        retry: Retry policy for filesystem steps

    Returns:
        FinalizeResult. Never raises for filesystem failures; the error
        string starts with "Finalize error:" on failure.
    """
    policy = retry or RetryPolicy()
    temp = Path(temp_path)
    final = Path(final_path)
    backup: Optional[Path] = None
    committed = False

    logger.info(
        f"[Finalize] {job_id}: temp={temp} final={final} overwrite={is_overwrite}"
        + (f" original={original_path}" if original_path else "")
    )

    try:
        _validate_temp(temp)
        expected_size = file_size(temp)

        if temp == final:
            logger.info(f"[Finalize] {job_id}: temp already at final path")
            return FinalizeResult(success=True, final_path=str(final))

        if is_overwrite and final.exists():
            candidate = backup_path_for(final)
            try:
                policy.run(f"backup {final.name}", move_file, final, candidate)
                backup = candidate
                logger.info(f"[Finalize] {job_id}: backed up original to {backup}")
            except RetryExhaustedError as e:
                logger.error(f"[Finalize] {job_id}: backup failed, continuing without one: {e}")

        policy.run(f"move {temp.name}", move_file, temp, final)
        committed = True

        actual_size = file_size(final)
        if actual_size != expected_size:
            raise FinalizeError(
                f"Size mismatch after move: expected {expected_size} bytes, got {actual_size}"
            )

    except (FinalizeError, RetryExhaustedError, OSError) as e:
        logger.error(f"[Finalize] {job_id}: failed: {e}")
        _remove_quietly(temp, "temp output", job_id)
        if backup is not None:
            try:
                policy.run(f"restore {final.name}", move_file, backup, final)
                logger.info(f"[Finalize] {job_id}: restored original from {backup}")
            except RetryExhaustedError as restore_error:
                logger.error(
                    f"[Finalize] {job_id}: restore failed, original left at {backup}: {restore_error}"
                )
                if committed:
                    _remove_quietly(final, "partial output", job_id)
        elif committed:
            _remove_quietly(final, "partial output", job_id)
        return FinalizeResult(
            success=False,
            error=f"{FINALIZE_ERROR_PREFIX} {e}",
            backup_path=str(backup) if backup else None,
        )

    if backup is not None:
        _remove_quietly(backup, "backup", job_id)
    _remove_quietly(temp, "leftover temp", job_id)

    logger.info(f"[Finalize] {job_id}: committed {final}")
    return FinalizeResult(
        success=True,
        final_path=str(final),
        backup_path=str(backup) if backup else None,
    )
