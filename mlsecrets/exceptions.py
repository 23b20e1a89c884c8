"""
Custom exception hierarchy for secret resolution.

Every error tells the operator what to do next through its ``remediation``:

    SecretError (base)
    ├── InvalidReferenceError    : malformed reference (check the reference)
    ├── SecretNotFoundError      : reference does not resolve (check the reference)
    ├── SecretExistsError        : insert would overwrite (check the reference)
    ├── SecretDecryptionError    : key/credential missing or expired (rotate the key)
    ├── SecretPermissionError    : store mode too open / too closed (fix permissions)
    └── StoreConfigurationError  : store missing or misconfigured (reconfigure store)
        └── UnsupportedOperationError

Rules:
    - Nothing here is retryable. Resolution failures surface immediately.
    - Library code raises, the CLI catches and reports.
    - Messages never contain secret material, only references and paths.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class Remediation(str, Enum):
    """What the operator should do about a failure."""
    CHECK_REFERENCE = "check_reference"
    ROTATE_KEY = "rotate_key"
    FIX_PERMISSIONS = "fix_permissions"
    RECONFIGURE_STORE = "reconfigure_store"

    @property
    def hint(self) -> str:
        return _REMEDIATION_HINTS[self]


_REMEDIATION_HINTS = {
    Remediation.CHECK_REFERENCE: "Verify the secret reference (scheme, path, field) and that the entry exists.",
    Remediation.ROTATE_KEY: "Import, renew or rotate the decryption key / credential for this store.",
    Remediation.FIX_PERMISSIONS: "Fix file-system permissions on the store (directories 0700, files 0600).",
    Remediation.RECONFIGURE_STORE: "Reconfigure the store location or install the missing tool.",
}


class SecretError(Exception):
    """Base exception for all secret resolution errors."""

    remediation: Remediation = Remediation.CHECK_REFERENCE
    exit_code: int = 1

    def __init__(self, message: str, *, reference: Optional[str] = None):
        super().__init__(message)
        self.reference = reference


class InvalidReferenceError(SecretError):
    """Reference string cannot be parsed or violates its scheme's rules."""
    exit_code = 2


class SecretNotFoundError(SecretError):
    """Reference is well formed but does not resolve."""
    exit_code = 3


class SecretExistsError(SecretError):
    """An entry already exists and overwrite was not requested."""
    exit_code = 7


class SecretDecryptionError(SecretError):
    """The caller lacks the key or credential needed to unlock the store.

    ``reason`` is one of REASONS so callers can tell an expired key from a
    missing one without parsing messages.
    """
    remediation = Remediation.ROTATE_KEY
    exit_code = 4

    REASONS = ("no_secret_key", "key_expired", "bad_passphrase", "credential_unavailable", "unknown")

    def __init__(self, message: str, *, reason: str = "unknown", reference: Optional[str] = None):
        if reason not in self.REASONS:
            raise ValueError(f"Unknown decryption failure reason: {reason}")
        super().__init__(message, reference=reference)
        self.reason = reason


class SecretPermissionError(SecretError):
    """Store permissions violate the backend's policy.

    ``too_permissive`` distinguishes "group/other can read this" from
    "the current user cannot read this".
    """
    remediation = Remediation.FIX_PERMISSIONS
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        mode: Optional[int] = None,
        allowed_mode: Optional[int] = None,
        too_permissive: bool = True,
        reference: Optional[str] = None,
    ):
        super().__init__(message, reference=reference)
        self.path = path
        self.mode = mode
        self.allowed_mode = allowed_mode
        self.too_permissive = too_permissive


class StoreConfigurationError(SecretError):
    """Store is missing, uninitialised, unreachable or its tooling is absent."""
    remediation = Remediation.RECONFIGURE_STORE
    exit_code = 6


class UnsupportedOperationError(StoreConfigurationError):
    """Backend does not support the requested operation (e.g. writing to env)."""
