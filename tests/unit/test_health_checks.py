"""
doctor checks: gpg key listing, store initialisation and permission audit/fix.
"""
import os
import subprocess
import sys
import time

from mlsecrets.config.config import Config
from mlsecrets.exceptions import Remediation
from mlsecrets.health_checks import (
    check_gpg_binary,
    check_secret_keys,
    check_store_initialised,
    check_tree_permissions,
    parse_secret_keys,
    run_health_checks,
)
from mlsecrets.secrets.permissions import file_mode

FUTURE = int(time.time()) + 365 * 86400
PAST = int(time.time()) - 86400


def colons(*keys):
    lines = []
    for key_id, validity, expires, uid in keys:
        lines.append(f"sec:{validity}:4096:1:{key_id}:1600000000:{expires}::u:::scESC:::+:::23::0:")
        lines.append(f"fpr:::::::::ABCDEF{key_id}:")
        lines.append(f"uid:{validity}::::1600000000::HASH::{uid}::::::::::0:")
    return "\n".join(lines) + "\n"


def key_runner(output):
    def runner(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 0, output.encode(), b"")
    return runner


class TestParseSecretKeys:

    def test_parses_keys_and_uids(self):
        keys = parse_secret_keys(colons(("AAAA1111", "u", FUTURE, "ML Ops <mlops@example.org>")))
        assert len(keys) == 1
        assert keys[0].key_id == "AAAA1111"
        assert keys[0].user_ids == ["ML Ops <mlops@example.org>"]
        assert keys[0].usable

    def test_no_expiry(self):
        keys = parse_secret_keys(colons(("AAAA1111", "u", "", "x")))
        assert keys[0].expires is None
        assert keys[0].usable

    def test_expired_by_date_or_flag(self):
        keys = parse_secret_keys(colons(("OLD1", "u", PAST, "x"), ("OLD2", "e", "", "y")))
        assert [k.expired for k in keys] == [True, True]
        assert not any(k.usable for k in keys)

    def test_revoked(self):
        keys = parse_secret_keys(colons(("REV1", "r", "", "x")))
        assert keys[0].revoked
        assert not keys[0].usable


class TestSecretKeyCheck:

    def test_usable_key(self, tmp_path):
        r = check_secret_keys("gpg", tmp_path, runner=key_runner(colons(("AAAA1111", "u", FUTURE, "x"))))
        assert r.ok
        assert "AAAA1111" in r.detail

    def test_only_expired_needs_rotation(self, tmp_path):
        r = check_secret_keys("gpg", tmp_path, runner=key_runner(colons(("OLD1", "e", PAST, "x"))))
        assert not r.ok
        assert r.remediation is Remediation.ROTATE_KEY
        assert "OLD1" in r.detail

    def test_no_keys(self, tmp_path):
        r = check_secret_keys("gpg", tmp_path, runner=key_runner(""))
        assert not r.ok
        assert r.remediation is Remediation.ROTATE_KEY

    def test_missing_binary(self, tmp_path):
        def runner(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        r = check_secret_keys("gpg", tmp_path, runner=runner)
        assert r.remediation is Remediation.RECONFIGURE_STORE


def test_gpg_binary_check():
    assert check_gpg_binary("gpg", which=lambda n: "/usr/bin/gpg").ok
    missing = check_gpg_binary("gpg", which=lambda n: None)
    assert not missing.ok
    assert missing.remediation is Remediation.RECONFIGURE_STORE


class TestStoreChecks:

    def test_initialised(self, store_dir):
        assert check_store_initialised(store_dir).ok

    def test_missing_gpg_id(self, store_dir):
        (store_dir / ".gpg-id").unlink()
        r = check_store_initialised(store_dir)
        assert not r.ok
        assert "mlsecrets init" in r.detail

    def test_missing_store(self, tmp_path):
        assert check_store_initialised(tmp_path / "absent").remediation is Remediation.RECONFIGURE_STORE

    def test_permission_report_and_fix(self, store_dir, make_entry):
        entry = make_entry("ml-projects/openai/api-key", b"x")
        os.chmod(entry, 0o644)

        report = check_tree_permissions("store permissions", store_dir, 0o700, 0o600)
        assert not report.ok
        assert report.remediation is Remediation.FIX_PERMISSIONS
        assert file_mode(entry) == 0o644

        fixed = check_tree_permissions("store permissions", store_dir, 0o700, 0o600, fix=True)
        assert fixed.ok
        assert fixed.fixed == [str(entry)]
        assert file_mode(entry) == 0o600

    def test_absent_tree_is_ok(self, tmp_path):
        assert check_tree_permissions("gnupg permissions", tmp_path / "absent", 0o700, 0o600).ok


def test_run_health_checks(store_dir, tmp_path):
    gnupg = tmp_path / "gnupg"
    gnupg.mkdir(mode=0o700)
    config = Config(password_store={"store_dir": store_dir, "gnupg_home": gnupg, "gpg_binary": sys.executable})

    results = run_health_checks(config, runner=key_runner(colons(("AAAA1111", "u", FUTURE, "x"))))

    assert [r.name for r in results] == [
        "gpg binary",
        "secret key",
        "password store",
        "store permissions",
        "gnupg permissions",
    ]
    assert all(r.ok for r in results)
