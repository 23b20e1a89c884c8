"""
Clipboard copy and timed clear, with the clipboard tools replaced by a fake runner.
"""
import hashlib
import subprocess

import pytest

from mlsecrets.exceptions import StoreConfigurationError
from mlsecrets.runtime import clipboard
from mlsecrets.runtime.clipboard import ClipboardClearer, copy_to_clipboard, detect_clipboard_tool
from mlsecrets.secrets.value import SecretValue


class FakeClipboard:
    """Runner that keeps clipboard contents in memory."""

    def __init__(self, tool):
        self.tool = tool
        self.contents = b""
        self.calls = []
        self.copy_returncode = 0

    def __call__(self, cmd, input=None, capture_output=False, check=False, **kwargs):
        self.calls.append(list(cmd))
        if cmd == self.tool.paste_cmd:
            return subprocess.CompletedProcess(cmd, 0, self.contents, b"")
        if self.copy_returncode != 0:
            return subprocess.CompletedProcess(cmd, self.copy_returncode, b"", b"")
        self.contents = input or b""
        return subprocess.CompletedProcess(cmd, 0, b"", b"")


@pytest.fixture
def tool():
    return clipboard._TOOLS["xclip"]


@pytest.fixture
def fake(tool):
    return FakeClipboard(tool)


class TestDetect:

    def test_prefers_wayland_tool_in_wayland_session(self, monkeypatch):
        monkeypatch.setattr(clipboard.sys, "platform", "linux")
        monkeypatch.setenv("WAYLAND_DISPLAY", "wayland-0")
        available = {"wl-copy", "xclip"}
        assert detect_clipboard_tool(which=lambda n: n if n in available else None).name == "wl-copy"

    def test_x11_order(self, monkeypatch):
        monkeypatch.setattr(clipboard.sys, "platform", "linux")
        monkeypatch.delenv("WAYLAND_DISPLAY", raising=False)
        available = {"wl-copy", "xsel"}
        assert detect_clipboard_tool(which=lambda n: n if n in available else None).name == "xsel"

    def test_macos(self, monkeypatch):
        monkeypatch.setattr(clipboard.sys, "platform", "darwin")
        assert detect_clipboard_tool(which=lambda n: "/usr/bin/" + n).name == "pbcopy"

    def test_no_tool(self, monkeypatch):
        monkeypatch.setattr(clipboard.sys, "platform", "linux")
        with pytest.raises(StoreConfigurationError):
            detect_clipboard_tool(which=lambda n: None)


class TestCopyAndClear:

    def test_copies_then_clears(self, tool, fake):
        clearer = copy_to_clipboard(SecretValue("sk-123"), clear_after=0.01, tool=tool, runner=fake)
        assert clearer.wait(timeout=5)
        assert fake.contents == b""
        assert fake.calls[0] == tool.copy_cmd

    def test_value_on_clipboard_before_clear(self, tool, fake):
        clearer = copy_to_clipboard(SecretValue("sk-123"), clear_after=60, tool=tool, runner=fake)
        try:
            assert fake.contents == b"sk-123"
        finally:
            clearer.cancel()

    def test_clipboard_changed_by_user_is_left_alone(self, tool, fake):
        clearer = copy_to_clipboard(SecretValue("sk-123"), clear_after=60, tool=tool, runner=fake)
        clearer.cancel()
        fake.contents = b"something the user copied"
        clearer.clear()
        assert fake.contents == b"something the user copied"
        assert clearer.cleared.is_set()

    def test_clearer_holds_only_a_digest(self, tool, fake):
        clearer = copy_to_clipboard(SecretValue("sk-123"), clear_after=60, tool=tool, runner=fake)
        clearer.cancel()
        assert "sk-123" not in repr(vars(clearer))

    def test_copy_failure(self, tool, fake):
        fake.copy_returncode = 1
        with pytest.raises(StoreConfigurationError):
            copy_to_clipboard(SecretValue("sk-123"), tool=tool, runner=fake)

    def test_manual_clear(self, tool, fake):
        fake.contents = b"x"
        ClipboardClearer(tool, hashlib.sha256(b"x").hexdigest(), 60, runner=fake).clear()
        assert fake.contents == b""
