"""
Security utilities for ClipDownloader.
- Filename sanitization
- Path containment checks
- Safe subprocess execution (argument arrays only)
"""

import re
import subprocess
import pathlib
import logging

from clipdownloader.core.constants import UNSAFE_FILENAME_CHARS, MAX_FILENAME_LEN

logger = logging.getLogger(__name__)


# ── Filename / path safety ────────────────────────────────────────────

def sanitize_filename(name: str) -> str:
    """Sanitize a title or rendered template for use as a file name."""
    if not name:
        return ""
    # Replace unsafe characters with underscore
    safe = re.sub(UNSAFE_FILENAME_CHARS, '_', name)
    # Remove path traversal sequences
    safe = safe.replace('..', '')
    # Collapse whitespace runs
    safe = re.sub(r'\s+', ' ', safe)
    # Truncate
    if len(safe) > MAX_FILENAME_LEN:
        safe = safe[:MAX_FILENAME_LEN]
    # Remove leading/trailing dots and spaces (hidden files on macOS)
    return safe.strip('. ')


def is_within(root: pathlib.Path, candidate: pathlib.Path) -> bool:
    """True if realpath(candidate) is inside realpath(root)."""
    try:
        candidate.resolve(strict=False).relative_to(root.resolve(strict=False))
    except ValueError:
        return False
    return True


# ── Subprocess safety ─────────────────────────────────────────────────

def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess using argument arrays only.
    shell=True is explicitly forbidden.
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    # Force shell=False: drop any caller-supplied value
    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(args, shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: int = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run subprocess and capture stdout/stderr."""
    return run_subprocess(
        args,
        capture_output=True,
        text=True,
        timeout=timeout,
        **kwargs,
    )
