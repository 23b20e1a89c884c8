"""
Azure service-principal credentials.

``az ad sp create-for-rbac`` prints the only copy of the SP password. This
module files it into the store straight away (one entry per field, plus an
optional archive of the full JSON). It also maps the entries back onto the
``AZURE_*`` variables DefaultAzureCredential reads, for use with
``run_with_secrets`` in place of exporting them from ``.bashrc``.
"""
from __future__ import annotations

import json
import re
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from mlsecrets.exceptions import InvalidReferenceError, SecretError, SecretExistsError
from mlsecrets.monitoring.logger import get_logger
from mlsecrets.secrets.resolver import SecretResolver
from mlsecrets.secrets.value import SecretValue

logger = get_logger(__name__)

_GUID = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")

# Entry name under the prefix -> environment variable DefaultAzureCredential reads
SP_ENTRIES = {
    "app-id": "AZURE_CLIENT_ID",
    "password": "AZURE_CLIENT_SECRET",
    "tenant": "AZURE_TENANT_ID",
    "subscription-id": "AZURE_SUBSCRIPTION_ID",
}


class ServicePrincipalCredentials(BaseModel):
    """Output of ``az ad sp create-for-rbac --output json``."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", hide_input_in_errors=True)

    app_id: str = Field(alias="appId")
    password: str = Field(repr=False)
    tenant: str
    display_name: Optional[str] = Field(default=None, alias="displayName")

    @field_validator("app_id", "tenant")
    @classmethod
    def must_be_guid(cls, v: str) -> str:
        if not _GUID.match(v):
            raise ValueError("expected a GUID")
        return v.lower()

    @field_validator("password")
    @classmethod
    def must_not_be_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("password is empty")
        return v

    @classmethod
    def from_json(cls, payload: str | bytes | SecretValue) -> "ServicePrincipalCredentials":
        if isinstance(payload, SecretValue):
            payload = payload.reveal()
        try:
            data = json.loads(payload)
        except ValueError:
            raise ValueError("Service principal payload is not valid JSON") from None
        if not isinstance(data, dict):
            raise ValueError("Service principal payload must be a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise ValueError(f"Invalid service principal payload (fields: {fields})") from None


def _validate_subscription(subscription_id: str) -> str:
    if not _GUID.match(subscription_id or ""):
        raise ValueError("subscription_id must be a GUID")
    return subscription_id.lower()


def import_service_principal(
    resolver: SecretResolver,
    credentials: ServicePrincipalCredentials,
    subscription_id: str,
    prefix: str = "azure/service-principal",
    force: bool = False,
) -> Dict[str, str]:
    """
    Store the SP fields as ``<prefix>/app-id``, ``password``, ``tenant``, ``subscription-id``.

    The import is all-or-nothing: without ``force`` every target is checked
    before anything is written, and entries this call created are removed
    again if a later store fails.

    Returns entry name -> reference for every entry written.
    """
    subscription_id = _validate_subscription(subscription_id)
    prefix = prefix.strip("/")
    fields = {
        "app-id": credentials.app_id,
        "password": credentials.password,
        "tenant": credentials.tenant,
        "subscription-id": subscription_id,
    }
    targets = {entry: f"pass:{prefix}/{entry}" for entry in fields}
    preexisting = {entry for entry, ref in targets.items() if resolver.exists(ref)}
    if preexisting and not force:
        first = sorted(preexisting)[0]
        raise SecretExistsError(
            f"Service principal entries already exist under {prefix}: {', '.join(sorted(preexisting))}",
            reference=targets[first],
        )

    written: Dict[str, str] = {}
    try:
        for entry, plain in fields.items():
            with SecretValue(plain) as value:
                ref = resolver.store(targets[entry], value, force=force)
            written[entry] = str(ref)
    except SecretError:
        for entry in written:
            if entry not in preexisting:
                resolver.remove(targets[entry])
        raise

    logger.info(
        "Service principal imported",
        prefix=prefix,
        app_id=credentials.app_id,
        display_name=credentials.display_name,
    )
    return written


def archive_service_principal(
    resolver: SecretResolver,
    raw_payload: SecretValue,
    project: str,
    prefix: str = "azure/devops-integration",
    force: bool = False,
) -> str:
    """Keep the full create-for-rbac JSON at ``<prefix>/<project>``."""
    ref = resolver.store(archive_reference(project, prefix), raw_payload, force=force)
    return str(ref)


def archive_reference(project: str, prefix: str = "azure/devops-integration") -> str:
    if not project or "/" in project or project in (".", ".."):
        raise InvalidReferenceError(f"Invalid project name '{project}'")
    return f"pass:{prefix.strip('/')}/{project}"


def service_principal_env(prefix: str = "azure/service-principal", scheme: str = "pass") -> Dict[str, str]:
    """AZURE_* variable -> reference, for ``run_with_secrets(env_secrets=...)``."""
    prefix = prefix.strip("/")
    return {env: f"{scheme}:{prefix}/{entry}" for entry, env in SP_ENTRIES.items()}
