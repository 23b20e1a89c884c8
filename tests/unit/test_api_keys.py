"""
ML project API key helpers.
"""
import pytest

from mlsecrets.api_keys import add_api_key, api_key_reference, get_api_key, list_api_keys
from mlsecrets.exceptions import InvalidReferenceError, SecretExistsError, SecretNotFoundError
from mlsecrets.secrets.value import SecretValue


def test_reference_layout():
    assert api_key_reference("openai", "api-key") == "pass:ml-projects/openai/api-key"
    assert api_key_reference("azure", "subscription-key", prefix="/team/") == "pass:team/azure/subscription-key"


@pytest.mark.parametrize("service, key", [("open/ai", "k"), ("openai", ".."), ("", "k"), ("openai", "-k"), ("a b", "k")])
def test_rejects_unsafe_components(service, key):
    with pytest.raises(InvalidReferenceError):
        api_key_reference(service, key)


def test_add_get_list(resolver):
    assert add_api_key(resolver, "openai", "api-key", SecretValue("sk-1\n")) == "pass:ml-projects/openai/api-key"
    add_api_key(resolver, "huggingface", "token", SecretValue("hf_1"))

    assert get_api_key(resolver, "openai", "api-key").first_line().text() == "sk-1"
    assert list_api_keys(resolver) == ["huggingface/token", "openai/api-key"]
    assert list_api_keys(resolver, service="openai") == ["openai/api-key"]


def test_add_existing_requires_force(resolver):
    add_api_key(resolver, "openai", "api-key", SecretValue("old"))
    with pytest.raises(SecretExistsError):
        add_api_key(resolver, "openai", "api-key", SecretValue("new"))
    add_api_key(resolver, "openai", "api-key", SecretValue("new"), force=True)
    assert get_api_key(resolver, "openai", "api-key").text() == "new"


def test_get_missing(resolver):
    with pytest.raises(SecretNotFoundError):
        get_api_key(resolver, "openai", "api-key")


def test_list_ignores_entries_outside_prefix(resolver, make_entry):
    make_entry("azure/service-principal/app-id", b"x")
    make_entry("ml-projects/openai/api-key", b"x")
    assert list_api_keys(resolver) == ["openai/api-key"]
