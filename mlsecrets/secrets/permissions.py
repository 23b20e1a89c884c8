"""
File-system permission policy for secret stores.

Directories holding key material are expected at 0700 and files at 0600
(the layout ``pass init`` and ``gpg`` create). Group or other bits beyond
the policy are too permissive; owner bits are never judged that way. A path
the owner cannot read is too restrictive.
"""
from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from mlsecrets.exceptions import SecretPermissionError
from mlsecrets.monitoring.logger import get_logger

logger = get_logger(__name__)

DIR_MODE = 0o700
FILE_MODE = 0o600


@dataclass
class PermissionFinding:
    path: Path
    mode: int
    allowed_mode: int
    too_permissive: bool

    def describe(self) -> str:
        problem = "too permissive" if self.too_permissive else "not readable by owner"
        return f"{self.path}: mode {self.mode:04o} is {problem} (allowed {self.allowed_mode:04o})"


def file_mode(path: Path | str) -> int:
    return stat.S_IMODE(os.stat(path).st_mode)


def evaluate_mode(path: Path | str, allowed_mode: int) -> Optional[PermissionFinding]:
    """Return a finding when ``path`` violates ``allowed_mode``, else None."""
    p = Path(path)
    mode = file_mode(p)
    if mode & ~allowed_mode & 0o077:
        return PermissionFinding(p, mode, allowed_mode, too_permissive=True)

    needed = os.R_OK | os.X_OK if p.is_dir() else os.R_OK
    if not os.access(p, needed):
        return PermissionFinding(p, mode, allowed_mode, too_permissive=False)
    return None


def check_mode(path: Path | str, allowed_mode: int, *, reference: Optional[str] = None) -> None:
    """
    Enforce ``allowed_mode`` on ``path``.

    Raises:
        SecretPermissionError: the mode grants bits outside allowed_mode, or
            the current user cannot read the path.
    """
    finding = evaluate_mode(path, allowed_mode)
    if finding is None:
        return
    raise SecretPermissionError(
        finding.describe(),
        path=str(finding.path),
        mode=finding.mode,
        allowed_mode=finding.allowed_mode,
        too_permissive=finding.too_permissive,
        reference=reference,
    )


def audit_tree(root: Path | str, dir_mode: int = DIR_MODE, file_mode_: int = FILE_MODE) -> List[PermissionFinding]:
    """Walk ``root`` and collect every path outside the policy."""
    root = Path(root)
    findings: List[PermissionFinding] = []
    if not root.exists():
        return findings

    candidates = [root] + sorted(root.rglob("*"))
    for p in candidates:
        if p.is_symlink():
            continue
        # Sockets (gpg-agent's S.* files) are managed by the agent itself
        if not (p.is_dir() or p.is_file()):
            continue
        finding = evaluate_mode(p, dir_mode if p.is_dir() else file_mode_)
        if finding is not None:
            findings.append(finding)
    return findings


def fix_tree(root: Path | str, dir_mode: int = DIR_MODE, file_mode_: int = FILE_MODE) -> List[Path]:
    """chmod every out-of-policy path under ``root``; returns the paths changed."""
    changed: List[Path] = []
    for finding in audit_tree(root, dir_mode, file_mode_):
        target = dir_mode if finding.path.is_dir() else file_mode_
        os.chmod(finding.path, target)
        changed.append(finding.path)
        logger.info("Permissions fixed", path=str(finding.path), old_mode=f"{finding.mode:04o}", new_mode=f"{target:04o}")
    return changed
