"""Azure-specific credential helpers."""
