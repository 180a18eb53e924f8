# src/todo_timer/core/errors.py

"""
Error taxonomy shared by the store and the services.

- ValidationError: rejected input, raised before any mutation.
- BackupFormatError: malformed backup payload (a ValidationError).
- StoreError: the durable medium failed (SQLite unavailable, disk full, ...).

Not-found updates/deletes are not errors: store calls report them as False / 0.
"""

from __future__ import annotations


class ValidationError(ValueError):
    """Input rejected before touching the store."""


class BackupFormatError(ValidationError):
    """Backup file is missing required keys or has the wrong shape."""


class StoreError(RuntimeError):
    """Persistence failed; the caller must not assume the mutation happened."""
