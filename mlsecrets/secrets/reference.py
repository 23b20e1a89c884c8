"""
Secret reference parsing.

Grammar: ``[scheme:]locator[#field]``

    pass:ml-projects/azure/subscription-key
    env:AZURE_CLIENT_SECRET
    file:~/.azure/sp-credentials.json#password
    keyvault:myproject-kv/StorageConnectionString
    ml-projects/openai/api-key            (default scheme)
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Optional

from mlsecrets.exceptions import InvalidReferenceError

SCHEMES = ("pass", "env", "file", "keyvault")

_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_VAULT_NAME = re.compile(r"^[A-Za-z0-9-]{3,24}$")
_KV_SECRET_NAME = re.compile(r"^[A-Za-z0-9-]{1,127}$")
_SCHEME_PREFIX = re.compile(r"^([a-z]+):(?!//)")


@dataclass(frozen=True)
class SecretReference:
    """Where a secret lives. Holds no secret material."""
    scheme: str
    locator: str
    field: Optional[str] = None

    @classmethod
    def parse(cls, text: str, default_scheme: str = "pass", default_vault: Optional[str] = None) -> "SecretReference":
        if not isinstance(text, str) or not text.strip():
            raise InvalidReferenceError("Secret reference is empty", reference=str(text))
        raw = text.strip()

        scheme = default_scheme
        body = raw
        m = _SCHEME_PREFIX.match(raw)
        if m and m.group(1) in SCHEMES:
            scheme = m.group(1)
            body = raw[m.end():]
        elif m and len(m.group(1)) > 1:
            # Single letters are left alone so Windows drive paths still parse as file locators
            raise InvalidReferenceError(f"Unknown secret scheme '{m.group(1)}'", reference=raw)

        if scheme not in SCHEMES:
            raise InvalidReferenceError(f"Unknown secret scheme '{scheme}'", reference=raw)

        field = None
        if "#" in body:
            body, field = body.rsplit("#", 1)
            if not field:
                raise InvalidReferenceError("Empty field selector after '#'", reference=raw)

        locator = _validate_locator(scheme, body, raw, default_vault)
        return cls(scheme=scheme, locator=locator, field=field)

    @property
    def vault(self) -> str:
        return self.locator.split("/")[0]

    @property
    def name(self) -> str:
        """Last path component, or the secret name for keyvault."""
        if self.scheme == "keyvault":
            return self.locator.split("/")[1]
        return self.locator.rstrip("/").split("/")[-1]

    @property
    def version(self) -> Optional[str]:
        if self.scheme != "keyvault":
            return None
        parts = self.locator.split("/")
        return parts[2] if len(parts) == 3 else None

    def with_field(self, field: Optional[str]) -> "SecretReference":
        return SecretReference(self.scheme, self.locator, field)

    def __str__(self) -> str:
        text = f"{self.scheme}:{self.locator}"
        if self.field:
            text += f"#{self.field}"
        return text


def _validate_locator(scheme: str, body: str, raw: str, default_vault: Optional[str]) -> str:
    if not body:
        raise InvalidReferenceError("Secret reference has no locator", reference=raw)

    if scheme == "env":
        if not _ENV_NAME.match(body):
            raise InvalidReferenceError(f"Invalid environment variable name '{body}'", reference=raw)
        return body

    if scheme == "file":
        return os.path.expanduser(body)

    if scheme == "pass":
        return validate_store_path(body, raw)

    # keyvault
    parts = body.split("/")
    if len(parts) == 1:
        if not default_vault:
            raise InvalidReferenceError(
                "Key Vault reference needs 'vault/name' (no default vault configured)", reference=raw
            )
        parts = [default_vault] + parts
    if len(parts) not in (2, 3) or not all(parts):
        raise InvalidReferenceError("Key Vault reference must be 'vault/name[/version]'", reference=raw)
    if not _VAULT_NAME.match(parts[0]):
        raise InvalidReferenceError(f"Invalid Key Vault name '{parts[0]}'", reference=raw)
    if not _KV_SECRET_NAME.match(parts[1]):
        raise InvalidReferenceError(f"Invalid Key Vault secret name '{parts[1]}'", reference=raw)
    return "/".join(parts)


def validate_store_path(path: str, raw: Optional[str] = None) -> str:
    """Validate a relative password-store path; returns it unchanged."""
    raw = raw if raw is not None else path
    if path.startswith("/") or path.endswith("/"):
        raise InvalidReferenceError("Store path must be relative and name an entry", reference=raw)
    segments = path.split("/")
    if any(seg in ("", ".", "..") for seg in segments):
        raise InvalidReferenceError("Store path must not contain empty, '.' or '..' segments", reference=raw)
    if path.endswith(".gpg"):
        raise InvalidReferenceError("Store path names the entry, not the .gpg file", reference=raw)
    return path
