"""
Environment checks behind ``mlsecrets doctor``.

Each check is independent and never raises for an expected failure; it
returns a CheckResult carrying the remediation instead.
"""
from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from mlsecrets.backends.password_store import GPG_ID_FILE, default_store_dir
from mlsecrets.exceptions import Remediation
from mlsecrets.monitoring.logger import get_logger
from mlsecrets.secrets.permissions import audit_tree, fix_tree

logger = get_logger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str
    remediation: Optional[Remediation] = None
    fixed: List[str] = field(default_factory=list)


@dataclass
class SecretKey:
    key_id: str
    validity: str
    expires: Optional[datetime]
    user_ids: List[str] = field(default_factory=list)

    @property
    def expired(self) -> bool:
        if self.validity == "e":
            return True
        return self.expires is not None and self.expires <= datetime.now(timezone.utc)

    @property
    def revoked(self) -> bool:
        return self.validity == "r"

    @property
    def usable(self) -> bool:
        return not (self.expired or self.revoked or self.validity in ("d", "i"))


def parse_secret_keys(colon_output: str) -> List[SecretKey]:
    """Parse ``gpg --list-secret-keys --with-colons`` output."""
    keys: List[SecretKey] = []
    for line in colon_output.splitlines():
        cols = line.split(":")
        if cols[0] == "sec" and len(cols) > 6:
            expires = None
            if cols[6].isdigit():
                expires = datetime.fromtimestamp(int(cols[6]), tz=timezone.utc)
            keys.append(SecretKey(key_id=cols[4], validity=cols[1], expires=expires))
        elif cols[0] == "uid" and keys and len(cols) > 9:
            keys[-1].user_ids.append(cols[9])
    return keys


def default_gnupg_home() -> Path:
    env_home = os.getenv("GNUPGHOME")
    return Path(env_home).expanduser() if env_home else Path.home() / ".gnupg"


def check_gpg_binary(gpg_binary: str, which: Callable[[str], Optional[str]] = shutil.which) -> CheckResult:
    path = which(gpg_binary)
    if path:
        return CheckResult("gpg binary", True, path)
    return CheckResult(
        "gpg binary", False,
        f"'{gpg_binary}' not on PATH (install gnupg / gnupg2)",
        Remediation.RECONFIGURE_STORE,
    )


def check_secret_keys(gpg_binary: str, gnupg_home: Path, runner: Runner = subprocess.run) -> CheckResult:
    env = dict(os.environ)
    env["GNUPGHOME"] = str(gnupg_home)
    try:
        result = runner(
            [gpg_binary, "--batch", "--list-secret-keys", "--with-colons"],
            capture_output=True, env=env, timeout=30, check=False,
        )
    except FileNotFoundError:
        return CheckResult("secret key", False, f"'{gpg_binary}' not found", Remediation.RECONFIGURE_STORE)

    keys = parse_secret_keys((result.stdout or b"").decode("utf-8", errors="replace"))
    usable = [k for k in keys if k.usable]
    if usable:
        return CheckResult("secret key", True, ", ".join(k.key_id for k in usable))
    if any(k.expired for k in keys):
        ids = ", ".join(k.key_id for k in keys if k.expired)
        return CheckResult("secret key", False, f"only expired keys: {ids}", Remediation.ROTATE_KEY)
    if any(k.revoked for k in keys):
        return CheckResult("secret key", False, "only revoked keys", Remediation.ROTATE_KEY)
    return CheckResult(
        "secret key", False,
        "no GPG secret key (generate one with 'gpg --full-generate-key')",
        Remediation.ROTATE_KEY,
    )


def check_store_initialised(store_dir: Path) -> CheckResult:
    if not store_dir.is_dir():
        return CheckResult(
            "password store", False,
            f"{store_dir} does not exist (run 'mlsecrets init <gpg-key-id>')",
            Remediation.RECONFIGURE_STORE,
        )
    if not (store_dir / GPG_ID_FILE).is_file():
        return CheckResult(
            "password store", False,
            f"{store_dir} has no {GPG_ID_FILE} (run 'mlsecrets init <gpg-key-id>')",
            Remediation.RECONFIGURE_STORE,
        )
    return CheckResult("password store", True, str(store_dir))


def check_tree_permissions(name: str, root: Path, dir_mode: int, file_mode: int, fix: bool = False) -> CheckResult:
    if not root.exists():
        return CheckResult(name, True, f"{root} absent, nothing to check")

    findings = audit_tree(root, dir_mode, file_mode)
    if not findings:
        return CheckResult(name, True, f"{root} within {dir_mode:04o}/{file_mode:04o}")
    if fix:
        changed = fix_tree(root, dir_mode, file_mode)
        remaining = audit_tree(root, dir_mode, file_mode)
        return CheckResult(
            name, not remaining,
            f"fixed {len(changed)} path(s) under {root}" + (f", {len(remaining)} still out of policy" if remaining else ""),
            Remediation.FIX_PERMISSIONS if remaining else None,
            fixed=[str(p) for p in changed],
        )
    detail = "; ".join(f.describe() for f in findings[:5])
    if len(findings) > 5:
        detail += f"; ... {len(findings) - 5} more"
    return CheckResult(name, False, detail, Remediation.FIX_PERMISSIONS)


def run_health_checks(config, fix: bool = False, runner: Runner = subprocess.run) -> List[CheckResult]:
    """Run every check against the configured store and GnuPG home."""
    store = config.password_store
    policy = config.file_policy
    store_dir = Path(store.store_dir).expanduser() if store.store_dir else default_store_dir()
    gnupg_home = Path(store.gnupg_home).expanduser() if store.gnupg_home else default_gnupg_home()

    results = [check_gpg_binary(store.gpg_binary)]
    if results[0].ok:
        results.append(check_secret_keys(store.gpg_binary, gnupg_home, runner=runner))
    results.append(check_store_initialised(store_dir))
    results.append(check_tree_permissions("store permissions", store_dir, policy.max_dir_mode, policy.max_file_mode, fix))
    results.append(check_tree_permissions("gnupg permissions", gnupg_home, policy.max_dir_mode, policy.max_file_mode, fix))

    for r in results:
        log = logger.info if r.ok else logger.warning
        log("Health check", check=r.name, ok=r.ok, remediation=r.remediation.value if r.remediation else None)
    return results
