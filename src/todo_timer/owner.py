# src/todo_timer/owner.py

"""
Persisted owner identity.

A single user name stored in a small text file next to the database. It is
read once at startup; when it is missing the front-end asks for a name before
any store operation runs.
"""

from __future__ import annotations

import contextlib
import logging
import os
from pathlib import Path

from .core.errors import ValidationError

logger = logging.getLogger(__name__)


class OwnerIdentity:
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> str | None:
        if not self._path.exists():
            return None
        try:
            name = self._path.read_text("utf-8").strip()
        except OSError:
            logger.exception("Failed to read owner identity from %s", self._path)
            return None
        return name or None

    def save(self, name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name cannot be empty.")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(name + "\n", "utf-8")
        os.replace(tmp, self._path)
        logger.info("Owner identity saved: %s", name)
        return name

    def clear(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            self._path.unlink()
        logger.info("Owner identity cleared (%s)", self._path)
