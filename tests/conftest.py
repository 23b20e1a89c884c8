"""
Pytest configuration and shared fixtures.
"""
import os
import subprocess
from pathlib import Path
from typing import List, Optional

import pytest

from mlsecrets.backends.env import EnvBackend
from mlsecrets.backends.file import FileBackend
from mlsecrets.backends.password_store import PasswordStoreBackend
from mlsecrets.secrets.resolver import SecretResolver, reset_default_resolver

FAKE_KEY_ID = "0123456789ABCDEF"


class FakeGpg:
    """
    Stand-in for subprocess.run(["gpg", ...]).

    "Encryption" is the identity: --encrypt copies stdin to --output and
    --decrypt returns the file's bytes. Set ``fail_with`` to simulate gpg errors.
    """

    def __init__(self):
        self.calls: List[list] = []
        self.inputs: List[Optional[bytes]] = []
        self.fail_with: Optional[tuple] = None  # (returncode, stderr bytes)
        self.raise_exc: Optional[BaseException] = None

    def __call__(self, cmd, input=None, capture_output=False, env=None, timeout=None, check=False, **kwargs):
        self.calls.append(list(cmd))
        self.inputs.append(input)
        if self.raise_exc is not None:
            raise self.raise_exc
        if self.fail_with is not None:
            code, stderr = self.fail_with
            return subprocess.CompletedProcess(cmd, code, b"", stderr)

        if "--decrypt" in cmd:
            data = Path(cmd[-1]).read_bytes()
            return subprocess.CompletedProcess(cmd, 0, data, b"")
        if "--encrypt" in cmd:
            out = Path(cmd[cmd.index("--output") + 1])
            out.write_bytes(input or b"")
            return subprocess.CompletedProcess(cmd, 0, b"", b"")
        return subprocess.CompletedProcess(cmd, 0, b"", b"")

    def recipients(self, call_index: int = -1) -> List[str]:
        cmd = self.calls[call_index]
        return [cmd[i + 1] for i, arg in enumerate(cmd) if arg == "--recipient"]


@pytest.fixture(autouse=True)
def _reset_default_resolver():
    reset_default_resolver()
    yield
    reset_default_resolver()


@pytest.fixture
def fake_gpg() -> FakeGpg:
    return FakeGpg()


@pytest.fixture
def store_dir(tmp_path) -> Path:
    """An initialised, private password store."""
    d = tmp_path / "password-store"
    d.mkdir()
    os.chmod(d, 0o700)
    gpg_id = d / ".gpg-id"
    gpg_id.write_text(FAKE_KEY_ID + "\n")
    os.chmod(gpg_id, 0o600)
    return d


def write_entry(store: Path, path: str, content: bytes) -> Path:
    """Place an entry on disk the way the FakeGpg 'encrypts' it."""
    entry = store / f"{path}.gpg"
    entry.parent.mkdir(parents=True, exist_ok=True)
    for parent in [entry.parent, *entry.parent.parents]:
        if parent == store or store not in parent.parents:
            break
        os.chmod(parent, 0o700)
    entry.write_bytes(content)
    os.chmod(entry, 0o600)
    return entry


@pytest.fixture
def password_store(store_dir, fake_gpg) -> PasswordStoreBackend:
    return PasswordStoreBackend(store_dir=store_dir, runner=fake_gpg)


@pytest.fixture
def environ() -> dict:
    return {}


@pytest.fixture
def resolver(password_store, environ) -> SecretResolver:
    return SecretResolver([EnvBackend(environ), FileBackend(), password_store])


@pytest.fixture
def make_entry(store_dir):
    def _make(path: str, content: bytes) -> Path:
        return write_entry(store_dir, path, content)
    return _make


@pytest.fixture
def fake_key_id() -> str:
    return FAKE_KEY_ID
