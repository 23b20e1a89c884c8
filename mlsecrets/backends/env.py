"""
Environment-variable backend.
"""
from __future__ import annotations

import os
from typing import Mapping, Optional

from mlsecrets.backends.base import SecretBackend
from mlsecrets.exceptions import SecretNotFoundError
from mlsecrets.secrets.reference import SecretReference
from mlsecrets.secrets.value import SecretValue


class EnvBackend(SecretBackend):
    """Reads secrets injected by the platform (CI variables, App Service settings, ...)."""

    scheme = "env"

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return self._environ if self._environ is not None else os.environ

    def resolve(self, ref: SecretReference) -> SecretValue:
        value = self.environ.get(ref.locator)
        if not value or not value.strip():
            raise SecretNotFoundError(
                f"Environment variable {ref.locator} is not set or empty. "
                f"Example: export {ref.locator}=<value> (or add it to .env.local)",
                reference=str(ref),
            )
        return SecretValue(value, source=str(ref))
