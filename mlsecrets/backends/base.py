"""
Secret backend interface.
"""
from __future__ import annotations

from typing import List

from mlsecrets.exceptions import SecretNotFoundError, UnsupportedOperationError
from mlsecrets.secrets.reference import SecretReference
from mlsecrets.secrets.value import SecretValue


class SecretBackend:
    """
    A store that can turn a SecretReference into a SecretValue.

    Backends are read-only unless they override store/remove/list.
    Errors are raised from mlsecrets.exceptions and never retried here.
    """

    scheme: str = ""

    def resolve(self, ref: SecretReference) -> SecretValue:
        raise NotImplementedError

    def exists(self, ref: SecretReference) -> bool:
        try:
            value = self.resolve(ref)
        except SecretNotFoundError:
            return False
        value.wipe()
        return True

    def store(self, ref: SecretReference, value: SecretValue, force: bool = False) -> None:
        raise UnsupportedOperationError(f"The '{self.scheme}' backend is read-only", reference=str(ref))

    def remove(self, ref: SecretReference) -> None:
        raise UnsupportedOperationError(f"The '{self.scheme}' backend is read-only", reference=str(ref))

    def list(self, prefix: str = "") -> List[str]:
        raise UnsupportedOperationError(f"The '{self.scheme}' backend cannot list entries")
