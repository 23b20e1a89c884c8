"""
Scoped secret files: private modes while open, gone on every exit path.
"""
import os
import stat

import pytest

from mlsecrets.secrets.scoped_file import default_secret_dir, secret_file
from mlsecrets.secrets.value import SecretValue


def mode(path):
    return stat.S_IMODE(os.stat(path).st_mode)


def test_file_is_private_while_open(tmp_path):
    with secret_file(SecretValue("-----BEGIN KEY-----"), suffix=".pem", directory=tmp_path) as path:
        assert path.read_text() == "-----BEGIN KEY-----"
        assert path.suffix == ".pem"
        assert mode(path) == 0o600
        assert mode(path.parent) == 0o700
        assert path.parent.parent == tmp_path


def test_removed_after_normal_exit(tmp_path):
    with secret_file(SecretValue("x"), directory=tmp_path) as path:
        pass
    assert not path.exists()
    assert not path.parent.exists()
    assert list(tmp_path.iterdir()) == []


def test_removed_after_exception(tmp_path):
    with pytest.raises(RuntimeError):
        with secret_file(SecretValue("x"), directory=tmp_path) as path:
            raise RuntimeError("tool crashed")
    assert not path.exists()
    assert list(tmp_path.iterdir()) == []


def test_tolerates_consumer_deleting_the_file(tmp_path):
    with secret_file(SecretValue("x"), directory=tmp_path) as path:
        path.unlink()
    assert list(tmp_path.iterdir()) == []


def test_leftover_files_in_private_dir_are_removed(tmp_path):
    with secret_file(SecretValue("x"), directory=tmp_path) as path:
        (path.parent / "secret.bak").write_text("copy")
    assert list(tmp_path.iterdir()) == []


def test_concurrent_files_do_not_collide(tmp_path):
    with secret_file(SecretValue("a"), directory=tmp_path) as a, secret_file(SecretValue("b"), directory=tmp_path) as b:
        assert a != b
        assert a.read_text() == "a"
        assert b.read_text() == "b"


def test_default_dir_prefers_configured(tmp_path):
    assert default_secret_dir(tmp_path) == tmp_path


def test_default_dir_is_writable():
    d = default_secret_dir()
    assert d.is_dir()
    assert os.access(d, os.W_OK)
