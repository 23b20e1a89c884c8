"""
Configuration models for mlsecrets.

Uses Pydantic for validation and type safety. Values come from (lowest to
highest precedence) model defaults, a YAML file, and ``MLSECRETS_*``
environment variables (nested with ``__``, e.g. ``MLSECRETS_PASSWORD_STORE__GPG_BINARY``).
"""
from typing import Literal, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import yaml
from pathlib import Path
import os
import re

CONFIG_SCHEMA_VERSION = "2026-10-01"

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


class _ConfigLoader(yaml.SafeLoader):
    """SafeLoader that keeps leading-zero integers as written, so ``0600`` stays 600."""


def _construct_int(loader, node):
    text = loader.construct_scalar(node).replace("_", "")
    if len(text) > 1 and text.startswith("0") and text.isdigit():
        return int(text, 10)
    return yaml.SafeLoader.construct_yaml_int(loader, node)


_ConfigLoader.add_constructor("tag:yaml.org,2002:int", _construct_int)


class ResolverConfig(BaseSettings):
    """Reference defaults and well-known store prefixes."""
    model_config = SettingsConfigDict(env_prefix="MLSECRETS_RESOLVER__", extra="ignore")

    # Scheme used when a reference has no "scheme:" prefix
    default_scheme: Literal["pass", "env", "file", "keyvault"] = "pass"
    api_key_prefix: str = "ml-projects"
    service_principal_prefix: str = "azure/service-principal"
    devops_integration_prefix: str = "azure/devops-integration"
    # Where scoped secret files are created (None = /dev/shm, then system temp)
    temp_dir: Optional[Path] = None

    @field_validator("api_key_prefix", "service_principal_prefix", "devops_integration_prefix")
    @classmethod
    def strip_slashes(cls, v: str) -> str:
        v = v.strip("/")
        if not v:
            raise ValueError("prefix must not be empty")
        return v


class PasswordStoreConfig(BaseSettings):
    """GPG password store (pass-compatible)."""
    model_config = SettingsConfigDict(env_prefix="MLSECRETS_PASSWORD_STORE__", extra="ignore")

    # None = $PASSWORD_STORE_DIR, then ~/.password-store
    store_dir: Optional[Path] = None
    gpg_binary: str = "gpg"
    # None = $GNUPGHOME, then ~/.gnupg
    gnupg_home: Optional[Path] = None
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=600.0)


class KeyVaultConfig(BaseSettings):
    """Azure Key Vault."""
    model_config = SettingsConfigDict(env_prefix="MLSECRETS_KEYVAULT__", extra="ignore")

    default_vault: Optional[str] = None
    vault_url_template: str = "https://{vault}.vault.azure.net/"

    @field_validator("vault_url_template")
    @classmethod
    def must_have_vault_placeholder(cls, v: str) -> str:
        if "{vault}" not in v:
            raise ValueError("vault_url_template must contain '{vault}'")
        return v


class FilePolicyConfig(BaseSettings):
    """Permission policy for on-disk key material and stores."""
    model_config = SettingsConfigDict(env_prefix="MLSECRETS_FILE_POLICY__", extra="ignore")

    max_file_mode: int = Field(default=0o600, ge=0, le=0o777)
    max_dir_mode: int = Field(default=0o700, ge=0, le=0o777)
    enforce: bool = True

    @field_validator("max_file_mode", "max_dir_mode", mode="before")
    @classmethod
    def parse_octal(cls, v):
        # Modes are chmod digits: "0600", "0o600" and 600 all mean 0o600
        if isinstance(v, str):
            return int(v, 8)
        if isinstance(v, int) and not isinstance(v, bool):
            digits = str(v)
            if v < 0 or v > 777 or any(c in "89" for c in digits):
                raise ValueError(f"mode {v} is not written in octal digits; use e.g. 600 or \"0600\"")
            return int(digits, 8)
        return v


class ClipboardConfig(BaseSettings):
    """Clipboard copy for interactive use."""
    model_config = SettingsConfigDict(env_prefix="MLSECRETS_CLIPBOARD__", extra="ignore")

    clear_after_seconds: float = Field(default=45.0, ge=1.0, le=3600.0)


class MonitoringConfig(BaseSettings):
    """Logging."""
    model_config = SettingsConfigDict(env_prefix="MLSECRETS_MONITORING__", extra="ignore")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    log_format: Literal["json", "console"] = "console"
    log_file: Optional[str] = None


class Config(BaseSettings):
    """Main configuration class."""
    model_config = SettingsConfigDict(
        env_prefix="MLSECRETS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    password_store: PasswordStoreConfig = Field(default_factory=PasswordStoreConfig)
    keyvault: KeyVaultConfig = Field(default_factory=KeyVaultConfig)
    file_policy: FilePolicyConfig = Field(default_factory=FilePolicyConfig)
    clipboard: ClipboardConfig = Field(default_factory=ClipboardConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    @classmethod
    def settings_customise_sources(cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings):
        # Environment beats YAML so operators can override a shared config file per shell
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """Load configuration from YAML file."""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            raw_content = f.read()

        # Regex to find ${VAR} or $VAR
        pattern = re.compile(r'\$\{([^}]+)\}|\$([a-zA-Z_][a-zA-Z0-9_]*)')

        def replace_match(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))  # Return original if not found

        expanded_content = pattern.sub(replace_match, raw_content)
        config_dict = yaml.load(expanded_content, Loader=_ConfigLoader) or {}
        if not isinstance(config_dict, dict):
            raise ValueError(f"Configuration file must contain a mapping: {yaml_path}")

        return cls(**config_dict)


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load and validate configuration.

    Args:
        config_path: Path to a YAML file. If None, uses $MLSECRETS_CONFIG, then
            the bundled config.yaml; model defaults apply when neither exists.

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If an explicitly given config file is missing
        ValueError: If configuration validation fails
    """
    if config_path is None:
        env_path = os.getenv("MLSECRETS_CONFIG")
        if env_path:
            config_path = env_path
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
        else:
            return Config()

    return Config.from_yaml(config_path)
