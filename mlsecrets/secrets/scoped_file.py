"""
Scoped secret files for tools that only accept a path (SSH keys, SP JSON, kubeconfig).

The file exists only inside the ``with`` block and is removed on every exit path.
"""
from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path
from typing import Iterator, Optional

from mlsecrets.monitoring.logger import get_logger
from mlsecrets.secrets.value import SecretValue

logger = get_logger(__name__)

_SHM_DIR = Path("/dev/shm")


def default_secret_dir(configured: Optional[Path] = None) -> Path:
    """Configured dir, else RAM-backed /dev/shm when usable, else the system temp dir."""
    if configured is not None:
        return Path(configured)
    if _SHM_DIR.is_dir() and os.access(_SHM_DIR, os.W_OK | os.X_OK):
        return _SHM_DIR
    return Path(tempfile.gettempdir())


def _shred(path: Path) -> None:
    try:
        size = path.stat().st_size
        with open(path, "r+b", buffering=0) as fh:
            fh.write(b"\0" * size)
            os.fsync(fh.fileno())
    except FileNotFoundError:
        return
    path.unlink(missing_ok=True)


@contextlib.contextmanager
def secret_file(
    value: SecretValue,
    suffix: str = "",
    directory: Optional[Path] = None,
) -> Iterator[Path]:
    """
    Write ``value`` to a private temporary file and yield its path.

    The file is created 0600 inside a fresh 0700 directory. On exit (normal or
    exceptional) the file is overwritten with zeros and unlinked, and the
    directory is removed.
    """
    parent = default_secret_dir(directory)
    private_dir = Path(tempfile.mkdtemp(prefix="mlsecrets-", dir=parent))
    path = private_dir / f"secret{suffix}"
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as fh:
            fh.write(value.reveal())
        logger.debug("Scoped secret file created", directory=str(private_dir), source=value.source)
        yield path
    finally:
        _shred(path)
        with contextlib.suppress(FileNotFoundError):
            for leftover in private_dir.iterdir():
                if leftover.is_file():
                    _shred(leftover)
            private_dir.rmdir()
        logger.debug("Scoped secret file removed", directory=str(private_dir))
