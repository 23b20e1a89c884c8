"""
mlsecrets: resolve secrets at the moment of use for MLOps tooling.
"""
from mlsecrets.exceptions import (
    InvalidReferenceError,
    Remediation,
    SecretDecryptionError,
    SecretError,
    SecretExistsError,
    SecretNotFoundError,
    SecretPermissionError,
    StoreConfigurationError,
    UnsupportedOperationError,
)
from mlsecrets.secrets.reference import SecretReference
from mlsecrets.secrets.resolver import SecretResolver, resolve_secret
from mlsecrets.secrets.scoped_file import secret_file
from mlsecrets.secrets.value import SecretValue

__version__ = "0.3.0"

__all__ = [
    "InvalidReferenceError",
    "Remediation",
    "SecretDecryptionError",
    "SecretError",
    "SecretExistsError",
    "SecretNotFoundError",
    "SecretPermissionError",
    "StoreConfigurationError",
    "UnsupportedOperationError",
    "SecretReference",
    "SecretResolver",
    "SecretValue",
    "resolve_secret",
    "secret_file",
]
