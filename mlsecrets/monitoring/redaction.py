"""
Log redaction helpers.

Designed for structlog processors.
"""

from __future__ import annotations

from typing import Any

from mlsecrets.secrets.value import SecretValue

REDACTED = "***REDACTED***"

SENSITIVE_KEY_FRAGMENTS = (
    "key",
    "secret",
    "token",
    "password",
    "authorization",
    "signature",
)

# Structural fields that contain a fragment above but never carry secret material.
_SAFE_KEYS = frozenset({"event", "logger", "level", "timestamp", "reference", "key_id", "key_name"})


def _is_sensitive_key(key: str) -> bool:
    k = str(key).lower()
    if k in _SAFE_KEYS:
        return False
    return any(frag in k for frag in SENSITIVE_KEY_FRAGMENTS)


def redact(obj: Any) -> Any:
    """
    Recursively redact dict keys that look sensitive, plus any secret-bearing values.
    """
    if isinstance(obj, SecretValue):
        return REDACTED
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return REDACTED
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if _is_sensitive_key(k):
                out[k] = REDACTED
            else:
                out[k] = redact(v)
        return out
    if isinstance(obj, (list, tuple)):
        return [redact(v) for v in obj]
    return obj


# Shortest line of a multi-line secret that is masked on its own
MIN_LINE_LENGTH = 4


def secret_needles(values: list[bytes]) -> list[bytes]:
    """
    Byte strings to mask for the given secret values, longest first.

    Each value is masked whole. Multi-line values (a ``pass`` entry with the
    password on line one and ``key: value`` lines below) also have each line
    masked, so printing a single line does not leak it.
    """
    needles = set()
    for raw in values:
        whole = bytes(raw).strip(b"\r\n")
        if not whole:
            continue
        needles.add(whole)
        if b"\n" in whole:
            needles.update(line for line in whole.splitlines() if len(line) >= MIN_LINE_LENGTH)
    return sorted(needles, key=lambda n: (-len(n), n))


def scrub_bytes(data: bytes, values: list[bytes]) -> bytes:
    """Mask secret values in raw output without decoding it."""
    marker = REDACTED.encode()
    for needle in secret_needles(values):
        data = data.replace(needle, marker)
    return data


def scrub_text(text: str, values: list[bytes], encoding: str = "utf-8") -> str:
    """
    Replace every occurrence of the given secret values in ``text``.

    Used on captured subprocess output before it reaches logs or callers.
    """
    for raw in secret_needles(values):
        try:
            needle = raw.decode(encoding)
        except UnicodeDecodeError:
            continue
        text = text.replace(needle, REDACTED)
    return text


def structlog_redaction_processor(_logger: Any, _method_name: str, event_dict: dict) -> dict:
    """
    Structlog processor: redact sensitive fields from event_dict.
    """
    return redact(event_dict)
