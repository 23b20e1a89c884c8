"""
Secret resolution: reference in, SecretValue out.

Resolution is single-shot. A failure is raised to the caller straight away
and its remediation names the fix (rotate a key, fix permissions, reconfigure
the store).
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from mlsecrets.backends.base import SecretBackend
from mlsecrets.exceptions import SecretError, StoreConfigurationError
from mlsecrets.monitoring.logger import get_logger
from mlsecrets.secrets.reference import SecretReference
from mlsecrets.secrets.value import SecretValue

logger = get_logger(__name__)


class SecretResolver:
    """Dispatches references to the backend registered for their scheme."""

    def __init__(
        self,
        backends: Iterable[SecretBackend],
        default_scheme: str = "pass",
        default_vault: Optional[str] = None,
    ):
        self._backends: Dict[str, SecretBackend] = {}
        for backend in backends:
            self.register(backend)
        self.default_scheme = default_scheme
        self.default_vault = default_vault

    @classmethod
    def from_config(cls, config) -> "SecretResolver":
        """Build the standard backend set from a Config."""
        from mlsecrets.backends.env import EnvBackend
        from mlsecrets.backends.file import FileBackend
        from mlsecrets.backends.keyvault import KeyVaultBackend
        from mlsecrets.backends.password_store import PasswordStoreBackend

        policy = config.file_policy
        store = config.password_store
        backends = [
            EnvBackend(),
            FileBackend(max_mode=policy.max_file_mode, enforce=policy.enforce),
            PasswordStoreBackend(
                store_dir=store.store_dir,
                gpg_binary=store.gpg_binary,
                gnupg_home=store.gnupg_home,
                timeout_seconds=store.timeout_seconds,
                dir_mode=policy.max_dir_mode,
                file_mode=policy.max_file_mode,
                enforce_permissions=policy.enforce,
            ),
            KeyVaultBackend(
                default_vault=config.keyvault.default_vault,
                vault_url_template=config.keyvault.vault_url_template,
            ),
        ]
        return cls(
            backends,
            default_scheme=config.resolver.default_scheme,
            default_vault=config.keyvault.default_vault,
        )

    # ----- registry -----

    def register(self, backend: SecretBackend) -> None:
        if not backend.scheme:
            raise ValueError(f"{type(backend).__name__} has no scheme")
        self._backends[backend.scheme] = backend

    @property
    def schemes(self) -> List[str]:
        return sorted(self._backends)

    def backend(self, scheme: str, reference: Optional[str] = None) -> SecretBackend:
        backend = self._backends.get(scheme)
        if backend is None:
            raise StoreConfigurationError(f"No backend registered for scheme '{scheme}'", reference=reference)
        return backend

    def backend_for(self, ref: SecretReference) -> SecretBackend:
        return self.backend(ref.scheme, str(ref))

    def parse(self, reference: str | SecretReference) -> SecretReference:
        if isinstance(reference, SecretReference):
            return reference
        return SecretReference.parse(reference, self.default_scheme, self.default_vault)

    # ----- resolution -----

    def resolve(self, reference: str | SecretReference) -> SecretValue:
        """
        Resolve ``reference`` to a SecretValue.

        Raises:
            InvalidReferenceError: malformed reference
            SecretNotFoundError: reference (or its #field) does not resolve
            SecretDecryptionError: key/credential missing, expired or rejected
            SecretPermissionError: store permissions outside policy
            StoreConfigurationError: store missing, unreachable or misconfigured
        """
        try:
            ref = self.parse(reference)
            backend = self.backend_for(ref)
            value = backend.resolve(ref)
        except SecretError as e:
            logger.warning(
                "Secret resolution failed",
                reference=str(reference),
                error_type=type(e).__name__,
                remediation=e.remediation.value,
            )
            raise

        if ref.field:
            try:
                with value:
                    value = value.field(ref.field)
            except SecretError as e:
                logger.warning(
                    "Secret resolution failed",
                    reference=str(ref),
                    error_type=type(e).__name__,
                    remediation=e.remediation.value,
                )
                raise

        logger.debug("Secret resolved", reference=str(ref), backend=ref.scheme)
        return value

    def resolve_many(self, references: Mapping[str, str]) -> Dict[str, SecretValue]:
        """Resolve all or nothing: on the first failure, wipe what was already resolved."""
        resolved: Dict[str, SecretValue] = {}
        try:
            for name, reference in references.items():
                resolved[name] = self.resolve(reference)
        except BaseException:
            for value in resolved.values():
                value.wipe()
            raise
        return resolved

    def check(self, reference: str | SecretReference) -> Tuple[bool, Optional[SecretError]]:
        """
        Check if a secret is available without raising SecretError.

        Returns:
            Tuple of (is_available, error)
        """
        try:
            value = self.resolve(reference)
        except SecretError as e:
            return (False, e)
        value.wipe()
        return (True, None)

    def exists(self, reference: str | SecretReference) -> bool:
        """True when the entry is present; other failures still raise."""
        ref = self.parse(reference).with_field(None)
        return self.backend_for(ref).exists(ref)

    # ----- writes -----

    def store(self, reference: str | SecretReference, value: SecretValue, force: bool = False) -> SecretReference:
        ref = self.parse(reference)
        self.backend_for(ref).store(ref, value, force=force)
        return ref

    def remove(self, reference: str | SecretReference) -> None:
        ref = self.parse(reference)
        self.backend_for(ref).remove(ref)

    def list(self, scheme: Optional[str] = None, prefix: str = "") -> List[str]:
        return self.backend(scheme or self.default_scheme).list(prefix)


_default_resolver: Optional[SecretResolver] = None


def get_default_resolver() -> SecretResolver:
    global _default_resolver
    if _default_resolver is None:
        from mlsecrets.config.config import load_config

        _default_resolver = SecretResolver.from_config(load_config())
    return _default_resolver


def reset_default_resolver() -> None:
    global _default_resolver
    _default_resolver = None


def resolve_secret(reference: str) -> SecretValue:
    """Resolve ``reference`` with the default, config-driven resolver."""
    return get_default_resolver().resolve(reference)
