"""
Password-store backend: GPG-encrypted entries laid out the way ``pass`` lays them out.

    ~/.password-store/
    ├── .gpg-id                      recipients, one per line
    └── ml-projects/azure/subscription-key.gpg

Decryption and encryption shell out to ``gpg`` (batch mode, no TTY), so the
user's gpg-agent and pinentry configuration applies unchanged. Plaintext only
ever travels over pipes.
"""
from __future__ import annotations

import os
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from mlsecrets.backends.base import SecretBackend
from mlsecrets.exceptions import (
    SecretDecryptionError,
    SecretExistsError,
    SecretNotFoundError,
    SecretPermissionError,
    StoreConfigurationError,
)
from mlsecrets.monitoring.logger import get_logger
from mlsecrets.secrets.permissions import DIR_MODE, FILE_MODE, check_mode
from mlsecrets.secrets.reference import SecretReference, validate_store_path
from mlsecrets.secrets.value import SecretValue

logger = get_logger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]

GPG_ID_FILE = ".gpg-id"


def default_store_dir() -> Path:
    env_dir = os.getenv("PASSWORD_STORE_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".password-store"


def classify_gpg_failure(stderr: str) -> Optional[str]:
    """
    Map gpg stderr to a SecretDecryptionError reason.

    Returns None when the failure is a file-permission problem rather than a key problem.
    """
    text = stderr.lower()
    if "permission denied" in text:
        return None
    if "expired" in text:
        return "key_expired"
    if "no secret key" in text or "unusable public key" in text or "no public key" in text:
        return "no_secret_key"
    if "bad passphrase" in text or "operation cancelled" in text or "no pinentry" in text:
        return "bad_passphrase"
    return "unknown"


class PasswordStoreBackend(SecretBackend):
    scheme = "pass"

    def __init__(
        self,
        store_dir: Optional[Path] = None,
        gpg_binary: str = "gpg",
        gnupg_home: Optional[Path] = None,
        timeout_seconds: float = 30.0,
        dir_mode: int = DIR_MODE,
        file_mode: int = FILE_MODE,
        enforce_permissions: bool = True,
        runner: Runner = subprocess.run,
    ):
        self.store_dir = Path(store_dir).expanduser() if store_dir else default_store_dir()
        self.gpg_binary = gpg_binary
        self.gnupg_home = Path(gnupg_home).expanduser() if gnupg_home else None
        self.timeout_seconds = timeout_seconds
        self.dir_mode = dir_mode
        self.file_mode = file_mode
        self.enforce_permissions = enforce_permissions
        self._runner = runner

    # ----- paths -----

    def entry_path(self, path: str) -> Path:
        validate_store_path(path)
        return self.store_dir / f"{path}.gpg"

    def _require_store(self, reference: Optional[str] = None) -> None:
        if not self.store_dir.is_dir():
            raise StoreConfigurationError(
                f"Password store not found at {self.store_dir}. "
                f"Initialise it with 'mlsecrets init <gpg-key-id>' or set PASSWORD_STORE_DIR.",
                reference=reference,
            )
        if self.enforce_permissions:
            check_mode(self.store_dir, self.dir_mode, reference=reference)

    def recipients_for(self, path: str) -> List[str]:
        """Recipients from the nearest .gpg-id at or above the entry's directory."""
        current = self.entry_path(path).parent
        root = self.store_dir.resolve()
        while True:
            gpg_id = current / GPG_ID_FILE
            if gpg_id.is_file():
                ids = [
                    line.strip()
                    for line in gpg_id.read_text().splitlines()
                    if line.strip() and not line.strip().startswith("#")
                ]
                if ids:
                    return ids
            if current.resolve() == root or current == current.parent:
                break
            current = current.parent
        raise StoreConfigurationError(
            f"No {GPG_ID_FILE} found for '{path}' in {self.store_dir}. Run 'mlsecrets init <gpg-key-id>'.",
            reference=f"pass:{path}",
        )

    def init(self, key_ids: Sequence[str], subdir: str = "", force: bool = False) -> Path:
        """
        Write ``.gpg-id`` for the store root (or ``subdir``), as ``pass init`` does.

        Creates the directory at the policy mode and the file at 0600. An
        existing ``.gpg-id`` is only replaced with ``force``; the entries it
        covered are then re-encrypted to the new recipients.

        Returns:
            Path of the .gpg-id written

        Raises:
            ValueError: no key IDs, or an ID that cannot go on a .gpg-id line
            SecretExistsError: .gpg-id exists and force is off
        """
        ids = [k.strip() for k in key_ids]
        if not ids or any(not k or k.startswith("#") or any(c.isspace() for c in k) for k in ids):
            raise ValueError("Expected one or more GPG key IDs")
        subdir = subdir.strip("/")
        if subdir:
            validate_store_path(subdir)
        directory = self.store_dir / subdir if subdir else self.store_dir
        gpg_id = directory / GPG_ID_FILE
        reference = f"pass:{subdir}" if subdir else None

        existed = gpg_id.is_file()
        if existed and not force:
            raise SecretExistsError(f"{gpg_id} already exists; pass force to replace its recipients", reference=reference)

        self._make_dirs(directory)
        if self.enforce_permissions:
            check_mode(self.store_dir, self.dir_mode, reference=reference)

        fd = os.open(gpg_id, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, self.file_mode)
        with os.fdopen(fd, "w") as f:
            f.write("\n".join(ids) + "\n")
        os.chmod(gpg_id, self.file_mode)

        reencrypted = self._reencrypt(directory) if existed else 0
        logger.info("Password store initialised", directory=str(directory), recipients=len(ids), reencrypted=reencrypted)
        return gpg_id

    def _reencrypt(self, directory: Path) -> int:
        count = 0
        for p in sorted(directory.rglob("*.gpg")):
            rel = p.relative_to(self.store_dir)
            if any(part.startswith(".") for part in rel.parts):
                continue
            # Entries under a deeper .gpg-id keep their own recipients
            if any((d / GPG_ID_FILE).is_file() for d in p.parents if directory in d.parents):
                continue
            ref = SecretReference(self.scheme, rel.with_suffix("").as_posix())
            with self.resolve(ref) as value:
                self.store(ref, value, force=True)
            count += 1
        return count

    # ----- gpg -----

    def _gpg_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        if self.gnupg_home:
            env["GNUPGHOME"] = str(self.gnupg_home)
        return env

    def _run_gpg(self, args: List[str], *, reference: str, input_bytes: Optional[bytes] = None) -> subprocess.CompletedProcess:
        cmd = [self.gpg_binary, "--quiet", "--batch", "--yes", *args]
        try:
            return self._runner(
                cmd,
                input=input_bytes,
                capture_output=True,
                env=self._gpg_env(),
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError:
            raise StoreConfigurationError(
                f"gpg binary '{self.gpg_binary}' not found. Install gnupg (e.g. 'apt install gnupg2' or 'brew install gnupg').",
                reference=reference,
            ) from None
        except subprocess.TimeoutExpired:
            raise SecretDecryptionError(
                f"gpg did not finish within {self.timeout_seconds:.0f}s; the agent may be waiting for a passphrase",
                reason="bad_passphrase",
                reference=reference,
            ) from None

    def _raise_for_gpg(self, result: subprocess.CompletedProcess, *, reference: str, path: Path) -> None:
        stderr = (result.stderr or b"").decode("utf-8", errors="replace").strip()
        if "unsafe permissions" in stderr.lower() and self.gnupg_home:
            raise SecretPermissionError(
                f"gpg refused unsafe permissions on {self.gnupg_home}",
                path=str(self.gnupg_home),
                allowed_mode=DIR_MODE,
                too_permissive=True,
                reference=reference,
            )
        reason = classify_gpg_failure(stderr)
        if reason is None:
            raise SecretPermissionError(
                f"gpg could not access {path}",
                path=str(path),
                allowed_mode=self.file_mode,
                too_permissive=False,
                reference=reference,
            )
        # Last stderr line carries gpg's own diagnosis, never plaintext
        detail = stderr.splitlines()[-1] if stderr else f"exit status {result.returncode}"
        raise SecretDecryptionError(f"gpg failed for {reference}: {detail}", reason=reason, reference=reference)

    # ----- SecretBackend -----

    def resolve(self, ref: SecretReference) -> SecretValue:
        reference = str(ref.with_field(None))
        self._require_store(reference)
        entry = self.entry_path(ref.locator)
        if not entry.is_file():
            raise SecretNotFoundError(f"'{ref.locator}' is not in the password store", reference=reference)
        if self.enforce_permissions:
            check_mode(entry, self.file_mode, reference=reference)

        result = self._run_gpg(["--decrypt", str(entry)], reference=reference)
        if result.returncode != 0:
            self._raise_for_gpg(result, reference=reference, path=entry)
        return SecretValue(result.stdout, source=reference)

    def exists(self, ref: SecretReference) -> bool:
        self._require_store(str(ref.with_field(None)))
        return self.entry_path(ref.locator).is_file()

    def store(self, ref: SecretReference, value: SecretValue, force: bool = False) -> None:
        reference = str(ref.with_field(None))
        self._require_store(reference)
        entry = self.entry_path(ref.locator)
        existed = entry.exists()
        if existed and not force:
            raise SecretExistsError(f"'{ref.locator}' already exists in the password store", reference=reference)

        recipients = self.recipients_for(ref.locator)
        self._make_dirs(entry.parent)

        fd, tmp_name = tempfile.mkstemp(prefix=".", suffix=".gpg.tmp", dir=entry.parent)
        os.close(fd)
        tmp = Path(tmp_name)
        try:
            args = ["--encrypt", "--output", str(tmp)]
            for r in recipients:
                args += ["--recipient", r]
            result = self._run_gpg(args, reference=reference, input_bytes=value.reveal())
            if result.returncode != 0:
                self._raise_for_gpg(result, reference=reference, path=entry)
            os.chmod(tmp, self.file_mode)
            os.replace(tmp, entry)
        finally:
            tmp.unlink(missing_ok=True)

        logger.info("Secret stored", reference=reference, recipients=len(recipients), overwritten=existed)

    def remove(self, ref: SecretReference) -> None:
        reference = str(ref.with_field(None))
        self._require_store(reference)
        entry = self.entry_path(ref.locator)
        if not entry.is_file():
            raise SecretNotFoundError(f"'{ref.locator}' is not in the password store", reference=reference)
        entry.unlink()

        # Prune directories the removal left empty, stopping at the store root
        parent = entry.parent
        root = self.store_dir.resolve()
        while parent.resolve() != root and not any(parent.iterdir()):
            parent.rmdir()
            parent = parent.parent
        logger.info("Secret removed", reference=reference)

    def list(self, prefix: str = "") -> List[str]:
        self._require_store()
        prefix = prefix.strip("/")
        base = self.store_dir / prefix if prefix else self.store_dir
        if prefix:
            validate_store_path(prefix)
            if (self.store_dir / f"{prefix}.gpg").is_file():
                return [prefix]
        if not base.is_dir():
            return []

        entries = []
        for p in base.rglob("*.gpg"):
            rel = p.relative_to(self.store_dir)
            if any(part.startswith(".") for part in rel.parts):
                continue
            entries.append(rel.with_suffix("").as_posix())
        return sorted(entries)

    def _make_dirs(self, directory: Path) -> None:
        missing = []
        d = directory
        while not d.exists():
            missing.append(d)
            d = d.parent
        for d in reversed(missing):
            d.mkdir(mode=self.dir_mode)
            os.chmod(d, self.dir_mode)
