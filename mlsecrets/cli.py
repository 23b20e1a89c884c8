"""
CLI entrypoint for mlsecrets.

Provides commands to read, store and inject secrets for MLOps tooling
(az, azcopy, databricks, terraform, git over HTTPS with a PAT).
"""
import sys
import typer
from typing import List, Optional
from pathlib import Path

from mlsecrets.api_keys import add_api_key, api_key_reference, list_api_keys
from mlsecrets.cli_output import print_critical_error, print_secret_error
from mlsecrets.config.config import Config, load_config
from mlsecrets.exceptions import SecretError, SecretExistsError
from mlsecrets.monitoring.logger import setup_logging, get_logger
from mlsecrets.secrets.resolver import SecretResolver
from mlsecrets.secrets.value import SecretValue

app = typer.Typer(
    name="mlsecrets",
    help="Resolve and inject secrets for MLOps tooling without leaking them",
    add_completion=False,
)

logger = get_logger(__name__)

CONFIG_OPTION = typer.Option(None, "--config", help="Path to config file")


def _bootstrap(config_path: Optional[Path]) -> Config:
    config = load_config(config_path)
    setup_logging(config.monitoring.log_level, config.monitoring.log_format, config.monitoring.log_file)
    return config


def _build_resolver(config: Config) -> SecretResolver:
    return SecretResolver.from_config(config)


def _fail(title: str, error: SecretError) -> None:
    print_secret_error(title, error)
    raise typer.Exit(error.exit_code)


def _read_secret_input(prompt: str, multiline: bool) -> SecretValue:
    """Read a new secret from stdin when piped, otherwise prompt without echo."""
    if multiline or not sys.stdin.isatty():
        if multiline and sys.stdin.isatty():
            typer.echo(f"Enter contents of {prompt} and press Ctrl+D when finished:", err=True)
        data = sys.stdin.read()
        if not multiline:
            data = data.rstrip("\r\n")
    else:
        data = typer.prompt(f"Enter secret for {prompt}", hide_input=True, confirmation_prompt=True)
    if not data:
        typer.echo("Error: empty secret, nothing stored", err=True)
        raise typer.Exit(1)
    return SecretValue(data)


def _emit(value: SecretValue, newline: bool) -> None:
    try:
        typer.echo(value.text(), nl=newline)
    except UnicodeDecodeError:
        sys.stdout.buffer.write(value.reveal())
        sys.stdout.flush()


@app.command()
def get(
    reference: str = typer.Argument(..., help="Secret reference, e.g. pass:ml-projects/azure/subscription-key"),
    line: bool = typer.Option(False, "--line", help="Print only the first line (pass password convention)"),
    field: Optional[str] = typer.Option(None, "--field", help="Select a JSON key or 'name: value' line"),
    no_newline: bool = typer.Option(False, "-n", "--no-newline", help="Do not append a newline"),
    config_path: Optional[Path] = CONFIG_OPTION,
):
    """
    Print a secret to stdout. This is the only command that prints secret values.

    Example:
        mlsecrets get pass:azure/service-principal/password -n | az login --service-principal ... --password @-
    """
    config = _bootstrap(config_path)
    resolver = _build_resolver(config)
    try:
        ref = resolver.parse(reference)
        if field:
            ref = ref.with_field(field)
        value = resolver.resolve(ref)
    except SecretError as e:
        _fail("Secret resolution failed", e)

    with value:
        if line:
            with value.first_line() as first:
                _emit(first, not no_newline)
        else:
            _emit(value, not no_newline and not value.reveal().endswith(b"\n"))


@app.command()
def check(
    reference: str = typer.Argument(..., help="Secret reference to check"),
    config_path: Optional[Path] = CONFIG_OPTION,
):
    """
    Verify that a reference resolves, without printing it.
    """
    config = _bootstrap(config_path)
    resolver = _build_resolver(config)
    ok, error = resolver.check(reference)
    if not ok:
        _fail(f"{reference} is not available", error)
    typer.echo(f"OK {reference}")


@app.command()
def init(
    key_ids: List[str] = typer.Argument(..., help="GPG key ID(s) or fingerprint(s) to encrypt to"),
    subdir: str = typer.Option("", "-p", "--path", help="Initialise a sub-folder with its own recipients"),
    force: bool = typer.Option(False, "-f", "--force", help="Replace existing recipients and re-encrypt"),
    config_path: Optional[Path] = CONFIG_OPTION,
):
    """
    Initialise the password store (writes .gpg-id, like 'pass init').
    """
    config = _bootstrap(config_path)
    resolver = _build_resolver(config)
    try:
        store = resolver.backend("pass")
        gpg_id = store.init(key_ids, subdir=subdir, force=force)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)
    except SecretError as e:
        _fail("Could not initialise password store", e)
    typer.echo(f"Password store initialised for {', '.join(key_ids)} ({gpg_id})")


@app.command()
def insert(
    reference: str = typer.Argument(..., help="Where to store the secret"),
    multiline: bool = typer.Option(False, "-m", "--multiline", help="Read until EOF"),
    force: bool = typer.Option(False, "-f", "--force", help="Overwrite an existing entry"),
    config_path: Optional[Path] = CONFIG_OPTION,
):
    """
    Store a secret read from stdin or a hidden prompt.
    """
    config = _bootstrap(config_path)
    resolver = _build_resolver(config)
    with _read_secret_input(reference, multiline) as value:
        try:
            ref = resolver.store(reference, value, force=force)
        except SecretError as e:
            _fail("Could not store secret", e)
    typer.echo(f"Stored {ref}")


@app.command()
def add(
    service: str = typer.Argument(..., help="Service name, e.g. azure, openai, huggingface"),
    key_name: str = typer.Argument(..., help="Key name, e.g. subscription-key"),
    force: bool = typer.Option(False, "-f", "--force", help="Overwrite an existing key"),
    config_path: Optional[Path] = CONFIG_OPTION,
):
    """
    Add an ML project API key under the api-key prefix.

    Example:
        mlsecrets add azure subscription-key
    """
    config = _bootstrap(config_path)
    resolver = _build_resolver(config)
    prefix = config.resolver.api_key_prefix
    try:
        target = api_key_reference(service, key_name, prefix)
        typer.echo(f"Adding API key for {service}/{key_name}", err=True)
        with _read_secret_input(target, multiline=False) as value:
            ref = add_api_key(resolver, service, key_name, value, prefix=prefix, force=force)
    except SecretError as e:
        _fail("Could not add API key", e)
    typer.echo(f"Stored {ref}")


@app.command("api-get")
def api_get(
    service: str = typer.Argument(...),
    key_name: str = typer.Argument(...),
    config_path: Optional[Path] = CONFIG_OPTION,
):
    """
    Print an ML project API key.
    """
    config = _bootstrap(config_path)
    resolver = _build_resolver(config)
    try:
        value = resolver.resolve(api_key_reference(service, key_name, config.resolver.api_key_prefix))
    except SecretError as e:
        _fail("API key lookup failed", e)
    with value:
        with value.first_line() as first:
            _emit(first, True)


@app.command("api-list")
def api_list(
    service: str = typer.Argument("", help="Restrict to one service"),
    config_path: Optional[Path] = CONFIG_OPTION,
):
    """
    List stored ML project API keys.
    """
    config = _bootstrap(config_path)
    resolver = _build_resolver(config)
    try:
        keys = list_api_keys(resolver, config.resolver.api_key_prefix, service)
    except SecretError as e:
        _fail("Could not list API keys", e)
    typer.echo("Stored API keys:")
    for k in keys:
        typer.echo(f"  {k}")


@app.command("ls")
def list_entries(
    prefix: str = typer.Argument("", help="Only entries under this prefix"),
    scheme: Optional[str] = typer.Option(None, "--scheme", help="Backend to list (default: configured default scheme)"),
    config_path: Optional[Path] = CONFIG_OPTION,
):
    """
    List entry names (never values).
    """
    config = _bootstrap(config_path)
    resolver = _build_resolver(config)
    try:
        entries = resolver.list(scheme, prefix)
    except SecretError as e:
        _fail("Could not list entries", e)
    for entry in entries:
        typer.echo(entry)


@app.command("rm")
def remove(
    reference: str = typer.Argument(..., help="Entry to delete"),
    yes: bool = typer.Option(False, "-y", "--yes", help="Do not ask for confirmation"),
    config_path: Optional[Path] = CONFIG_OPTION,
):
    """
    Delete a stored secret.
    """
    config = _bootstrap(config_path)
    resolver = _build_resolver(config)
    if not yes and not typer.confirm(f"Delete {reference}?"):
        raise typer.Abort()
    try:
        resolver.remove(reference)
    except SecretError as e:
        _fail("Could not delete secret", e)
    typer.echo(f"Removed {reference}")


@app.command("exec", context_settings={"ignore_unknown_options": True})
def exec_command(
    command: List[str] = typer.Argument(..., help="Command to run, after '--'"),
    env: List[str] = typer.Option([], "--env", "-e", help="NAME=REFERENCE, value placed in the child environment"),
    file: List[str] = typer.Option([], "--file", help="NAME=REFERENCE, NAME holds the path of a scoped secret file"),
    stdin: Optional[str] = typer.Option(None, "--stdin", help="Reference piped to the command's stdin"),
    azure_sp: bool = typer.Option(False, "--azure-sp", help="Inject AZURE_CLIENT_ID/SECRET/TENANT_ID/SUBSCRIPTION_ID"),
    config_path: Optional[Path] = CONFIG_OPTION,
):
    """
    Run a command with secrets injected, then wipe them.

    Example:
        mlsecrets exec --azure-sp -- az ml workspace list
        mlsecrets exec -e AZURE_DEVOPS_EXT_PAT=pass:azure/devops/pat -- az devops project list
    """
    from mlsecrets.azure.service_principal import service_principal_env
    from mlsecrets.runtime.injection import parse_assignments, run_with_secrets

    config = _bootstrap(config_path)
    resolver = _build_resolver(config)
    try:
        env_secrets = parse_assignments(env)
        file_secrets = parse_assignments(file)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)
    if azure_sp:
        for name, ref in service_principal_env(config.resolver.service_principal_prefix).items():
            env_secrets.setdefault(name, ref)

    try:
        result = run_with_secrets(
            command,
            env_secrets=env_secrets,
            file_secrets=file_secrets,
            stdin_secret=stdin,
            resolver=resolver,
            temp_dir=config.resolver.temp_dir,
        )
    except SecretError as e:
        _fail("Secret injection failed; command not started", e)
    except OSError as e:
        print_critical_error(f"Could not start {command[0]}", e, include_type=True)
        raise typer.Exit(127)
    raise typer.Exit(result.returncode)


@app.command()
def clip(
    reference: str = typer.Argument(..., help="Secret to copy"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds before the clipboard is cleared"),
    whole: bool = typer.Option(False, "--whole", help="Copy the whole entry, not just the first line"),
    config_path: Optional[Path] = CONFIG_OPTION,
):
    """
    Copy a secret to the clipboard and clear it after a timeout.
    """
    from mlsecrets.runtime.clipboard import copy_to_clipboard

    config = _bootstrap(config_path)
    resolver = _build_resolver(config)
    clear_after = timeout if timeout is not None else config.clipboard.clear_after_seconds
    try:
        value = resolver.resolve(reference)
        with value:
            target = value if whole else value.first_line()
            with target:
                clearer = copy_to_clipboard(target, clear_after)
    except SecretError as e:
        _fail("Could not copy secret", e)

    typer.echo(f"Copied {reference} to clipboard. Will clear in {clear_after:.0f} seconds.", err=True)
    try:
        clearer.wait()
    except KeyboardInterrupt:
        clearer.cancel()
        clearer.clear()


@app.command("import-sp")
def import_sp(
    source: str = typer.Argument("-", help="JSON from 'az ad sp create-for-rbac', a file path or '-' for stdin"),
    subscription: str = typer.Option(..., "--subscription", help="Subscription ID the principal is scoped to"),
    project: Optional[str] = typer.Option(None, "--project", help="Also archive the full JSON for this DevOps project"),
    force: bool = typer.Option(False, "-f", "--force", help="Overwrite existing entries"),
    config_path: Optional[Path] = CONFIG_OPTION,
):
    """
    Store service-principal credentials in the password store instead of a JSON file or .bashrc.

    Example:
        az ad sp create-for-rbac --name mlops-automation --role Contributor -o json \\
            | mlsecrets import-sp - --subscription $(az account show --query id -o tsv)
    """
    from mlsecrets.azure.service_principal import (
        ServicePrincipalCredentials,
        archive_reference,
        archive_service_principal,
        import_service_principal,
    )

    config = _bootstrap(config_path)
    resolver = _build_resolver(config)

    try:
        raw = sys.stdin.buffer.read() if source == "-" else Path(source).read_bytes()
    except OSError as e:
        typer.echo(f"Error: cannot read {source}: {e.strerror or e}", err=True)
        raise typer.Exit(2)
    with SecretValue(raw) as payload:
        del raw
        try:
            creds = ServicePrincipalCredentials.from_json(payload)
        except ValueError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(2)
        try:
            if project and not force:
                archive_ref = archive_reference(project, config.resolver.devops_integration_prefix)
                if resolver.exists(archive_ref):
                    raise SecretExistsError(f"{archive_ref} already exists", reference=archive_ref)
            written = import_service_principal(
                resolver, creds, subscription,
                prefix=config.resolver.service_principal_prefix, force=force,
            )
            if project:
                written["archive"] = archive_service_principal(
                    resolver, payload, project,
                    prefix=config.resolver.devops_integration_prefix, force=force,
                )
        except ValueError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(2)
        except SecretError as e:
            _fail("Could not import service principal", e)

    for entry, ref in written.items():
        typer.echo(f"Stored {entry:<16} {ref}")
    if source != "-":
        typer.echo(f"You can now delete {source} (e.g. 'shred -u {source}').", err=True)


@app.command()
def doctor(
    fix: bool = typer.Option(False, "--fix", help="chmod store and GnuPG home into policy"),
    config_path: Optional[Path] = CONFIG_OPTION,
):
    """
    Check gpg, keys, the password store and permissions.
    """
    from mlsecrets.health_checks import run_health_checks

    config = _bootstrap(config_path)
    results = run_health_checks(config, fix=fix)
    for r in results:
        mark = "✅" if r.ok else "❌"
        typer.echo(f"{mark} {r.name:<18} {r.detail}")
        if not r.ok and r.remediation:
            typer.echo(f"   → {r.remediation.hint}")
    if not all(r.ok for r in results):
        raise typer.Exit(1)


@app.callback(invoke_without_command=True)
def callback(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
):
    """
    mlsecrets - secrets for MLOps tooling

    Resolves pass:, env:, file: and keyvault: references at the moment of use.
    """
    if version:
        from mlsecrets import __version__

        typer.echo(f"mlsecrets v{__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def main() -> None:
    from mlsecrets.config.dotenv_loader import load_dotenv_files

    # Explicit dotenv loading for local/dev. In prod this is a no-op.
    load_dotenv_files()
    app()
