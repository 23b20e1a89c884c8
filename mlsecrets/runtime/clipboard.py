"""
Clipboard copy with timed clear, the ``pass -c`` workflow.

Only a SHA-256 digest of the copied value is kept, so the clearer can tell
whether the clipboard still holds the secret without holding the secret.
"""
from __future__ import annotations

import hashlib
import os
import shutil
import subprocess
import sys
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from mlsecrets.exceptions import StoreConfigurationError
from mlsecrets.monitoring.logger import get_logger
from mlsecrets.secrets.value import SecretValue

logger = get_logger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]

DEFAULT_CLEAR_AFTER = 45.0


@dataclass(frozen=True)
class ClipboardTool:
    name: str
    copy_cmd: List[str]
    paste_cmd: List[str]


_TOOLS = {
    "pbcopy": ClipboardTool("pbcopy", ["pbcopy"], ["pbpaste"]),
    "wl-copy": ClipboardTool("wl-copy", ["wl-copy"], ["wl-paste", "--no-newline"]),
    "xclip": ClipboardTool("xclip", ["xclip", "-selection", "clipboard"], ["xclip", "-selection", "clipboard", "-o"]),
    "xsel": ClipboardTool("xsel", ["xsel", "--clipboard", "--input"], ["xsel", "--clipboard", "--output"]),
}


def detect_clipboard_tool(which: Callable[[str], Optional[str]] = shutil.which) -> ClipboardTool:
    """Pick the clipboard tool for this platform/session."""
    if sys.platform == "darwin":
        order = ["pbcopy"]
    elif os.getenv("WAYLAND_DISPLAY"):
        order = ["wl-copy", "xclip", "xsel"]
    else:
        order = ["xclip", "xsel", "wl-copy"]

    for name in order:
        if which(name):
            return _TOOLS[name]
    raise StoreConfigurationError(
        f"No clipboard tool found (tried {', '.join(order)}). Install one or use 'mlsecrets get'."
    )


def _digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class ClipboardClearer:
    """Clears the clipboard after a delay if it still holds the copied value."""

    def __init__(self, tool: ClipboardTool, digest: str, delay: float, runner: Runner = subprocess.run):
        self.tool = tool
        self.digest = digest
        self.delay = delay
        self._runner = runner
        self._timer: Optional[threading.Timer] = None
        self.cleared = threading.Event()

    def start(self) -> None:
        self._timer = threading.Timer(self.delay, self.clear)
        self._timer.daemon = False
        self._timer.start()

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self.cleared.wait(timeout)

    def clear(self) -> None:
        current = self._runner(self.tool.paste_cmd, capture_output=True, check=False)
        if current.returncode == 0 and _digest(current.stdout or b"") != self.digest:
            logger.info("Clipboard changed since copy; leaving it alone", tool=self.tool.name)
        else:
            self._runner(self.tool.copy_cmd, input=b"", capture_output=True, check=False)
            logger.info("Clipboard cleared", tool=self.tool.name)
        self.cleared.set()


def copy_to_clipboard(
    value: SecretValue,
    clear_after: float = DEFAULT_CLEAR_AFTER,
    *,
    tool: Optional[ClipboardTool] = None,
    runner: Runner = subprocess.run,
) -> ClipboardClearer:
    """
    Copy ``value`` to the clipboard and schedule it to be cleared.

    Returns the started ClipboardClearer; callers that exit early should
    ``wait()`` on it so the clear still happens.
    """
    tool = tool or detect_clipboard_tool()
    data = value.reveal()
    result = runner(tool.copy_cmd, input=data, capture_output=True, check=False)
    if result.returncode != 0:
        raise StoreConfigurationError(f"{tool.name} failed with exit status {result.returncode}")

    clearer = ClipboardClearer(tool, _digest(data), clear_after, runner=runner)
    del data
    clearer.start()
    logger.info("Secret copied to clipboard", tool=tool.name, clear_after_seconds=clear_after, source=value.source)
    return clearer
