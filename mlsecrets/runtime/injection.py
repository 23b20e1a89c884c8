"""
Run a command with secrets injected at the moment of use.

Secrets go into the child's environment, a scoped file, or its stdin, and
never into argv, where ``ps`` and shell history would see them. Captured
output is scrubbed of every injected value before it is returned.
"""
from __future__ import annotations

import contextlib
import os
import subprocess
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from mlsecrets.monitoring.logger import get_logger
from mlsecrets.monitoring.redaction import scrub_bytes, scrub_text
from mlsecrets.secrets.resolver import SecretResolver, get_default_resolver
from mlsecrets.secrets.scoped_file import secret_file
from mlsecrets.secrets.value import SecretValue

logger = get_logger(__name__)


def parse_assignments(items: Sequence[str]) -> Dict[str, str]:
    """Parse ``NAME=REFERENCE`` pairs (as given on the command line)."""
    out: Dict[str, str] = {}
    for item in items:
        name, sep, reference = item.partition("=")
        name = name.strip()
        if not sep or not name or not reference.strip():
            raise ValueError(f"Expected NAME=REFERENCE, got '{item}'")
        if name in out:
            raise ValueError(f"Variable {name} given more than once")
        out[name] = reference.strip()
    return out


def _scrub(output, values: List[bytes]):
    if output is None:
        return None
    if isinstance(output, bytes):
        return scrub_bytes(output, values)
    return scrub_text(output, values)


def run_with_secrets(
    command: Sequence[str],
    env_secrets: Optional[Mapping[str, str]] = None,
    file_secrets: Optional[Mapping[str, str]] = None,
    stdin_secret: Optional[str] = None,
    *,
    resolver: Optional[SecretResolver] = None,
    capture_output: bool = False,
    text: bool = True,
    timeout: Optional[float] = None,
    check: bool = False,
    cwd: Optional[Path] = None,
    temp_dir: Optional[Path] = None,
) -> subprocess.CompletedProcess:
    """
    Resolve every reference, then run ``command`` with the secrets injected.

    Args:
        command: argv of the program to run (no shell)
        env_secrets: env var name -> reference; the value is placed in the child env
        file_secrets: env var name -> reference; the value is written to a scoped
            file and the env var holds its path
        stdin_secret: reference piped to the child's stdin
        resolver: resolver to use (default: config-driven resolver)
        capture_output: capture stdout/stderr (scrubbed before return)
        check: raise CalledProcessError (with scrubbed output) on non-zero exit

    Returns:
        CompletedProcess with scrubbed stdout/stderr

    Raises:
        SecretError: a reference failed to resolve; the command was not started
    """
    if not command:
        raise ValueError("No command given")

    resolver = resolver or get_default_resolver()
    env_secrets = dict(env_secrets or {})
    file_secrets = dict(file_secrets or {})
    overlap = set(env_secrets) & set(file_secrets)
    if overlap:
        raise ValueError(f"Variables given as both env and file secrets: {sorted(overlap)}")

    wanted = {f"env:{k}": v for k, v in env_secrets.items()}
    wanted.update({f"file:{k}": v for k, v in file_secrets.items()})
    if stdin_secret is not None:
        wanted["stdin"] = stdin_secret

    # All-or-nothing: nothing is started unless every reference resolves
    values: Dict[str, SecretValue] = resolver.resolve_many(wanted)
    raw_values = [v.reveal() for v in values.values()]

    try:
        with contextlib.ExitStack() as stack:
            child_env = dict(os.environ)
            for name in env_secrets:
                child_env[name] = values[f"env:{name}"].text()
            for name in file_secrets:
                path = stack.enter_context(secret_file(values[f"file:{name}"], directory=temp_dir))
                child_env[name] = str(path)

            stdin_bytes = values["stdin"].reveal() if "stdin" in values else None

            logger.info(
                "Running command with injected secrets",
                program=command[0],
                env_vars=sorted(env_secrets),
                file_vars=sorted(file_secrets),
                stdin=stdin_bytes is not None,
            )
            try:
                result = subprocess.run(
                    list(command),
                    input=stdin_bytes,
                    capture_output=capture_output,
                    env=child_env,
                    timeout=timeout,
                    cwd=cwd,
                    check=False,
                )
            except subprocess.TimeoutExpired as e:
                e.output = _scrub(e.output, raw_values)
                e.stderr = _scrub(e.stderr, raw_values)
                raise
            finally:
                del child_env
    finally:
        for value in values.values():
            value.wipe()

    stdout = _scrub(result.stdout, raw_values)
    stderr = _scrub(result.stderr, raw_values)
    raw_values.clear()
    if text and capture_output:
        stdout = stdout.decode("utf-8", errors="replace") if stdout is not None else None
        stderr = stderr.decode("utf-8", errors="replace") if stderr is not None else None

    completed = subprocess.CompletedProcess(result.args, result.returncode, stdout, stderr)
    logger.info("Command finished", program=command[0], returncode=result.returncode)
    if check and result.returncode != 0:
        raise subprocess.CalledProcessError(result.returncode, result.args, output=stdout, stderr=stderr)
    return completed
