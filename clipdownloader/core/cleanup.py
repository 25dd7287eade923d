"""
Cleanup: per-job temp workspace creation and removal.
"""

import uuid
import shutil
import logging
from pathlib import Path

from clipdownloader.core.constants import TEMP_ROOT, TEMP_DIR_PREFIX
from clipdownloader.core.error_codes import JobError, ErrorCode

logger = logging.getLogger(__name__)


def create_workspace(root: Path | None = None) -> Path:
    """Create a fresh ClipDownloader_<uuid> directory for one job."""
    root = root or TEMP_ROOT
    workspace = root / f"{TEMP_DIR_PREFIX}{uuid.uuid4()}"
    try:
        workspace.mkdir(parents=True, exist_ok=False)
    except OSError as e:
        raise JobError(ErrorCode.TEMP_DIRECTORY_FAILED,
                       f"Could not create temp directory {workspace}: {e}") from e
    logger.debug("Created workspace: %s", workspace)
    return workspace


def cleanup_workspace(workspace: Path | None) -> bool:
    """
    Delete a job workspace. Failures are logged, never raised.
    Returns True when the directory is gone afterwards.
    """
    if workspace is None or not workspace.exists():
        return True
    try:
        shutil.rmtree(workspace)
        logger.debug("Deleted: %s", workspace)
    except Exception as e:
        logger.warning("Failed to delete %s: %s", workspace, e)
        return False
    return True


def remove_partial_output(path: Path | None) -> bool:
    """Delete a partially written output file, if any."""
    if path is None or not path.exists():
        return True
    try:
        path.unlink()
        logger.debug("Removed partial output: %s", path)
    except OSError as e:
        logger.warning("Failed to remove partial output %s: %s", path, e)
        return False
    return True
