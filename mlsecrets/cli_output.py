"""
Shared CLI output helpers for error reporting.
"""
from __future__ import annotations

import sys
import traceback

from mlsecrets.exceptions import SecretDecryptionError, SecretError, SecretPermissionError


def print_secret_error(title: str, error: SecretError) -> None:
    """Diagnostic for an expected failure: what broke and what to do, no traceback."""
    print(f"ERROR - {title}", file=sys.stderr)
    print(f"  {error}", file=sys.stderr)
    if error.reference:
        print(f"  Reference:   {error.reference}", file=sys.stderr)
    if isinstance(error, SecretDecryptionError):
        print(f"  Reason:      {error.reason}", file=sys.stderr)
    if isinstance(error, SecretPermissionError) and error.path:
        problem = "too permissive" if error.too_permissive else "too restrictive"
        print(f"  Path:        {error.path} ({problem})", file=sys.stderr)
    print(f"  Remediation: {error.remediation.hint}", file=sys.stderr)


def print_critical_error(title: str, error: Exception, *, include_type: bool = True) -> None:
    print("=" * 80, file=sys.stderr)
    print(f"CRITICAL ERROR - {title}", file=sys.stderr)
    print("=" * 80, file=sys.stderr)
    print(f"Error: {error}", file=sys.stderr)
    if include_type:
        print(f"Type: {type(error).__name__}", file=sys.stderr)
    traceback.print_exc(file=sys.stderr)
    print("=" * 80, file=sys.stderr)
