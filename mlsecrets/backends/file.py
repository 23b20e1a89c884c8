"""
Plain-file backend for key material kept on disk (SSH keys, sp-credentials.json).

Files must be 0600 or stricter, the mode ``configure-azure-cli``-style setups
apply with ``chmod 600``.
"""
from __future__ import annotations

from pathlib import Path

from mlsecrets.backends.base import SecretBackend
from mlsecrets.exceptions import SecretNotFoundError, SecretPermissionError
from mlsecrets.secrets.permissions import FILE_MODE, check_mode, file_mode
from mlsecrets.secrets.reference import SecretReference
from mlsecrets.secrets.value import SecretValue


class FileBackend(SecretBackend):
    scheme = "file"

    def __init__(self, max_mode: int = FILE_MODE, enforce: bool = True):
        self.max_mode = max_mode
        self.enforce = enforce

    def resolve(self, ref: SecretReference) -> SecretValue:
        path = Path(ref.locator)
        if not path.is_file():
            raise SecretNotFoundError(f"Secret file not found: {path}", reference=str(ref))

        if self.enforce:
            check_mode(path, self.max_mode, reference=str(ref))

        try:
            data = path.read_bytes()
        except PermissionError:
            raise SecretPermissionError(
                f"{path}: not readable by the current user",
                path=str(path),
                mode=file_mode(path),
                allowed_mode=self.max_mode,
                too_permissive=False,
                reference=str(ref),
            ) from None
        return SecretValue(data, source=str(ref))
