"""
Azure Key Vault backend.

Authenticates with DefaultAzureCredential (env service principal, managed
identity, or the ``az login`` session), as the MLOps environment scripts do.
"""
from __future__ import annotations

from typing import Callable, Dict, List, Optional

from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
)
from azure.identity import DefaultAzureCredential
from azure.keyvault.secrets import SecretClient

from mlsecrets.backends.base import SecretBackend
from mlsecrets.exceptions import (
    SecretDecryptionError,
    SecretError,
    SecretExistsError,
    SecretNotFoundError,
    SecretPermissionError,
    StoreConfigurationError,
)
from mlsecrets.monitoring.logger import get_logger
from mlsecrets.secrets.reference import SecretReference
from mlsecrets.secrets.value import SecretValue

logger = get_logger(__name__)

ClientFactory = Callable[[str], SecretClient]

DEFAULT_VAULT_URL_TEMPLATE = "https://{vault}.vault.azure.net/"


def _default_client_factory(vault_url: str) -> SecretClient:
    return SecretClient(vault_url=vault_url, credential=DefaultAzureCredential())


def translate_azure_error(exc: Exception, reference: str) -> SecretError:
    """Map an azure-core exception onto the secret error taxonomy."""
    if isinstance(exc, ResourceNotFoundError):
        return SecretNotFoundError(f"Secret not found in Key Vault: {reference}", reference=reference)
    if isinstance(exc, ClientAuthenticationError):
        return SecretDecryptionError(
            f"No usable Azure credential for {reference}. Run 'az login' or set AZURE_CLIENT_ID/"
            f"AZURE_TENANT_ID/AZURE_CLIENT_SECRET.",
            reason="credential_unavailable",
            reference=reference,
        )
    if isinstance(exc, ServiceRequestError):
        return StoreConfigurationError(f"Key Vault unreachable for {reference}: {exc}", reference=reference)
    if isinstance(exc, HttpResponseError):
        status = getattr(exc, "status_code", None)
        if status == 403:
            return SecretPermissionError(
                f"Access to {reference} forbidden by the vault's access policy / RBAC",
                too_permissive=False,
                reference=reference,
            )
        if status == 401:
            return SecretDecryptionError(
                f"Azure credential rejected for {reference}",
                reason="credential_unavailable",
                reference=reference,
            )
        return StoreConfigurationError(f"Key Vault request failed for {reference} (HTTP {status})", reference=reference)
    raise exc


class KeyVaultBackend(SecretBackend):
    scheme = "keyvault"

    def __init__(
        self,
        default_vault: Optional[str] = None,
        vault_url_template: str = DEFAULT_VAULT_URL_TEMPLATE,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.default_vault = default_vault
        self.vault_url_template = vault_url_template
        self._client_factory = client_factory or _default_client_factory
        self._clients: Dict[str, SecretClient] = {}

    def vault_url(self, vault: str) -> str:
        return self.vault_url_template.format(vault=vault)

    def client(self, vault: str) -> SecretClient:
        if vault not in self._clients:
            self._clients[vault] = self._client_factory(self.vault_url(vault))
        return self._clients[vault]

    def resolve(self, ref: SecretReference) -> SecretValue:
        reference = str(ref.with_field(None))
        try:
            secret = self.client(ref.vault).get_secret(ref.name, version=ref.version)
        except (HttpResponseError, ServiceRequestError) as exc:
            raise translate_azure_error(exc, reference) from None

        if secret.value is None:
            raise SecretNotFoundError(f"Secret {reference} has no value", reference=reference)
        return SecretValue(secret.value, source=reference)

    def exists(self, ref: SecretReference) -> bool:
        reference = str(ref.with_field(None))
        try:
            self.client(ref.vault).get_secret(ref.name)
        except ResourceNotFoundError:
            return False
        except (HttpResponseError, ServiceRequestError) as exc:
            raise translate_azure_error(exc, reference) from None
        return True

    def store(self, ref: SecretReference, value: SecretValue, force: bool = False) -> None:
        reference = str(ref.with_field(None))
        existed = self.exists(ref)
        if existed and not force:
            raise SecretExistsError(f"{reference} already exists", reference=reference)
        try:
            self.client(ref.vault).set_secret(ref.name, value.text())
        except (HttpResponseError, ServiceRequestError) as exc:
            raise translate_azure_error(exc, reference) from None
        logger.info("Secret stored", reference=reference, overwritten=existed)

    def remove(self, ref: SecretReference) -> None:
        reference = str(ref.with_field(None))
        try:
            self.client(ref.vault).begin_delete_secret(ref.name)
        except (HttpResponseError, ServiceRequestError) as exc:
            raise translate_azure_error(exc, reference) from None
        logger.info("Secret deletion started", reference=reference)

    def list(self, prefix: str = "") -> List[str]:
        """``prefix`` is ``vault[/name-prefix]``; falls back to the default vault."""
        vault, _, name_prefix = prefix.partition("/")
        vault = vault or self.default_vault
        if not vault:
            raise StoreConfigurationError("No Key Vault given and no default vault configured")
        try:
            names = [p.name for p in self.client(vault).list_properties_of_secrets()]
        except (HttpResponseError, ServiceRequestError) as exc:
            raise translate_azure_error(exc, f"keyvault:{vault}") from None
        return sorted(f"{vault}/{n}" for n in names if n and n.startswith(name_prefix))
