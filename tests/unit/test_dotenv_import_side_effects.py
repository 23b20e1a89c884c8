import os
import subprocess
import sys
import textwrap
from pathlib import Path

from mlsecrets.config.dotenv_loader import load_dotenv_files


def _unset(monkeypatch, name):
    # setenv first so monkeypatch restores the variable even though dotenv writes it
    monkeypatch.setenv(name, "")
    monkeypatch.delenv(name)


def test_config_import_has_no_dotenv_side_effects():
    """
    Importing mlsecrets.config.config or the CLI must not load dotenv files.

    We enforce this by injecting a fake `dotenv` module whose `load_dotenv` would abort
    the process if called.
    """
    repo_root = Path(__file__).resolve().parent.parent.parent

    code = textwrap.dedent(
        """
        import dotenv

        def load_dotenv(*args, **kwargs):
            raise SystemExit("DOTENV_CALLED")

        # If our code tries to load dotenv at import time, abort the process.
        dotenv.load_dotenv = load_dotenv

        import mlsecrets.config.config
        import mlsecrets.cli
        print("OK")
        """
    ).strip()

    env = dict(os.environ)
    env["PYTHONPATH"] = str(repo_root)

    res = subprocess.run(
        [sys.executable, "-c", code],
        cwd=str(repo_root),
        env=env,
        capture_output=True,
        text=True,
    )

    assert res.returncode == 0, f"stdout={res.stdout}\nstderr={res.stderr}"
    assert "OK" in (res.stdout or "")


def test_local_overrides_base(tmp_path, monkeypatch):
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    _unset(monkeypatch, "MLSECRETS_TEST_A")
    _unset(monkeypatch, "MLSECRETS_TEST_B")
    (tmp_path / ".env").write_text("MLSECRETS_TEST_A=base\nMLSECRETS_TEST_B=base\n")
    (tmp_path / ".env.local").write_text("MLSECRETS_TEST_B=local\n")

    loaded = load_dotenv_files(root=tmp_path)

    assert loaded == [tmp_path / ".env", tmp_path / ".env.local"]
    assert os.environ["MLSECRETS_TEST_A"] == "base"
    assert os.environ["MLSECRETS_TEST_B"] == "local"


def test_existing_environment_beats_base_file(tmp_path, monkeypatch):
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    monkeypatch.setenv("MLSECRETS_TEST_A", "shell")
    (tmp_path / ".env").write_text("MLSECRETS_TEST_A=file\n")
    load_dotenv_files(root=tmp_path)
    assert os.environ["MLSECRETS_TEST_A"] == "shell"


def test_prod_loads_nothing(tmp_path, monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "prod")
    _unset(monkeypatch, "MLSECRETS_TEST_A")
    (tmp_path / ".env").write_text("MLSECRETS_TEST_A=file\n")
    assert load_dotenv_files(root=tmp_path) == []
    assert "MLSECRETS_TEST_A" not in os.environ
