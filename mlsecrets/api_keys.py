"""
ML project API keys, filed as ``<prefix>/<service>/<key_name>`` in the password store.
"""
from __future__ import annotations

import re
from typing import List

from mlsecrets.exceptions import InvalidReferenceError
from mlsecrets.secrets.resolver import SecretResolver
from mlsecrets.secrets.value import SecretValue

DEFAULT_PREFIX = "ml-projects"

_COMPONENT = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def _component(kind: str, value: str) -> str:
    if not value or not _COMPONENT.match(value) or ".." in value:
        raise InvalidReferenceError(
            f"Invalid {kind} '{value}': use letters, digits, '.', '_' or '-' (no '/')",
            reference=value,
        )
    return value


def api_key_reference(service: str, key_name: str, prefix: str = DEFAULT_PREFIX) -> str:
    return f"pass:{prefix.strip('/')}/{_component('service', service)}/{_component('key name', key_name)}"


def add_api_key(
    resolver: SecretResolver,
    service: str,
    key_name: str,
    value: SecretValue,
    prefix: str = DEFAULT_PREFIX,
    force: bool = False,
) -> str:
    ref = resolver.store(api_key_reference(service, key_name, prefix), value, force=force)
    return str(ref)


def get_api_key(resolver: SecretResolver, service: str, key_name: str, prefix: str = DEFAULT_PREFIX) -> SecretValue:
    return resolver.resolve(api_key_reference(service, key_name, prefix))


def list_api_keys(resolver: SecretResolver, prefix: str = DEFAULT_PREFIX, service: str = "") -> List[str]:
    """Entries under the prefix, returned as ``service/key_name``."""
    prefix = prefix.strip("/")
    scope = f"{prefix}/{_component('service', service)}" if service else prefix
    entries = resolver.list("pass", scope)
    return [e[len(prefix) + 1:] for e in entries if e.startswith(prefix + "/")]
