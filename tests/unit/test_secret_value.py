"""
SecretValue must never render its contents and must be wipeable.
"""
import json
import pickle

import pytest

from mlsecrets.exceptions import SecretNotFoundError
from mlsecrets.secrets.value import SecretValue


class TestNeverLeaks:

    def test_repr_str_and_format_are_redacted(self):
        v = SecretValue("hunter2")
        assert "hunter2" not in repr(v)
        assert "hunter2" not in str(v)
        assert "hunter2" not in f"{v}"
        assert "hunter2" not in "%s" % (v,)

    def test_pickle_refused(self):
        with pytest.raises(TypeError):
            pickle.dumps(SecretValue("hunter2"))

    def test_not_hashable(self):
        with pytest.raises(TypeError):
            hash(SecretValue("x"))


class TestAccess:

    def test_reveal_and_text(self):
        v = SecretValue(b"s3cret\n")
        assert v.reveal() == b"s3cret\n"
        assert v.text() == "s3cret\n"
        assert len(v) == 7

    def test_first_line_follows_pass_convention(self):
        v = SecretValue("p@ss\nlogin: alice\nurl: https://dev.azure.com\n")
        assert v.first_line().text() == "p@ss"

    def test_first_line_strips_carriage_return(self):
        assert SecretValue("p@ss\r\nmore").first_line().text() == "p@ss"

    def test_equality_is_by_content(self):
        assert SecretValue("a") == SecretValue("a")
        assert SecretValue("a") != SecretValue("b")
        assert SecretValue("a") == b"a"


class TestFieldSelection:

    def test_json_field(self):
        payload = json.dumps({"appId": "id-1", "password": "pw", "tenant": "t"})
        assert SecretValue(payload).field("password").text() == "pw"

    def test_json_non_string_field_is_reencoded(self):
        assert SecretValue('{"port": 5432}').field("port").text() == "5432"

    def test_pass_style_field_line(self):
        v = SecretValue("p@ss\nlogin: alice\nurl: https://example.org:8443/x\n")
        assert v.field("login").text() == "alice"
        # Only the first ':' separates key and value
        assert v.field("url").text() == "https://example.org:8443/x"

    def test_first_line_is_never_a_field(self):
        with pytest.raises(SecretNotFoundError):
            SecretValue("login: not-a-field").field("login")

    def test_missing_field_raises_not_found_with_source(self):
        v = SecretValue('{"a": "1"}', source="file:/tmp/sp.json")
        with pytest.raises(SecretNotFoundError) as exc:
            v.field("password")
        assert exc.value.reference == "file:/tmp/sp.json"


class TestWipe:

    def test_wipe_blocks_further_reads(self):
        v = SecretValue("hunter2")
        v.wipe()
        assert v.wiped
        with pytest.raises(ValueError):
            v.reveal()
        with pytest.raises(ValueError):
            v.text()

    def test_context_manager_wipes_on_exit(self):
        with SecretValue("hunter2") as v:
            assert v.text() == "hunter2"
        assert v.wiped

    def test_context_manager_wipes_on_error(self):
        v = SecretValue("hunter2")
        with pytest.raises(RuntimeError):
            with v:
                raise RuntimeError("boom")
        assert v.wiped

    def test_wipe_zeroes_shared_buffer(self):
        v = SecretValue("hunter2")
        buf = v._buf
        v.wipe()
        assert all(b == 0 for b in buf)
