"""
In-memory secret container.

A SecretValue never renders its contents: repr, str and format are redacted,
pickling is refused, and the backing buffer can be zeroed with wipe().
"""
from __future__ import annotations

import hmac
import json
from typing import Optional

_REDACTED = "SecretValue(***)"


class SecretValue:
    """Secret bytes held for the duration of the call that consumes them."""

    __slots__ = ("_buf", "_wiped", "source")

    def __init__(self, data: bytes | bytearray | str, *, source: Optional[str] = None):
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._buf = bytearray(data)
        self._wiped = False
        # Reference text, never the value
        self.source = source

    # ----- access -----

    def _check(self) -> None:
        if self._wiped:
            raise ValueError("SecretValue has been wiped")

    def reveal(self) -> bytes:
        """Return the raw secret bytes."""
        self._check()
        return bytes(self._buf)

    def text(self, encoding: str = "utf-8") -> str:
        self._check()
        return self._buf.decode(encoding)

    def first_line(self) -> "SecretValue":
        """Password-store convention: the password is the first line of the entry."""
        self._check()
        line = bytes(self._buf).split(b"\n", 1)[0].rstrip(b"\r")
        return SecretValue(line, source=self.source)

    def field(self, name: str) -> "SecretValue":
        """
        Select one field from a structured secret.

        JSON objects are indexed by key; anything else is scanned for a
        ``name: value`` line after the first line, as pass entries are laid out.
        """
        from mlsecrets.exceptions import SecretNotFoundError

        self._check()
        raw = bytes(self._buf)
        try:
            doc = json.loads(raw)
        except ValueError:
            doc = None

        if isinstance(doc, dict):
            if name not in doc or doc[name] is None:
                raise SecretNotFoundError(f"Field '{name}' not present in secret", reference=self.source)
            value = doc[name]
            if not isinstance(value, str):
                value = json.dumps(value)
            return SecretValue(value, source=self.source)

        for line in raw.decode("utf-8", errors="replace").splitlines()[1:]:
            key, sep, rest = line.partition(":")
            if sep and key.strip() == name:
                return SecretValue(rest.strip(), source=self.source)

        raise SecretNotFoundError(f"Field '{name}' not present in secret", reference=self.source)

    # ----- lifecycle -----

    def wipe(self) -> None:
        """Zero the buffer. Further reads raise ValueError."""
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._buf = bytearray()
        self._wiped = True

    @property
    def wiped(self) -> bool:
        return self._wiped

    def __enter__(self) -> "SecretValue":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    # ----- never leak -----

    def __repr__(self) -> str:
        return _REDACTED

    __str__ = __repr__

    def __format__(self, format_spec: str) -> str:
        return _REDACTED

    def __reduce__(self):
        raise TypeError("SecretValue cannot be pickled")

    def __len__(self) -> int:
        return len(self._buf)

    def __bool__(self) -> bool:
        return bool(self._buf)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretValue):
            return hmac.compare_digest(bytes(self._buf), bytes(other._buf))
        if isinstance(other, (bytes, bytearray)):
            return hmac.compare_digest(bytes(self._buf), bytes(other))
        return NotImplemented

    __hash__ = None
