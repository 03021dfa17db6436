"""Audit logger: append-only JSON Lines logging with size-based rotation."""

from __future__ import annotations

import os
from pathlib import Path

from src.models import AuditEvent


class AuditLogger:
    """Append-only structured audit logger for relay and admin events."""

    def __init__(
        self,
        log_path: str,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
    ) -> None:
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count

    @classmethod
    def from_env(cls, log_path: str) -> AuditLogger:
        """Create AuditLogger with rotation settings from environment variables."""
        max_bytes = int(os.environ.get("CHATRELAY_AUDIT_LOG_MAX_BYTES", "10485760"))
        backup_count = int(os.environ.get("CHATRELAY_AUDIT_LOG_BACKUP_COUNT", "5"))
        return cls(log_path=log_path, max_bytes=max_bytes, backup_count=backup_count)

    def _backup(self, index: int) -> Path:
        return self.log_path.parent / f"{self.log_path.name}.{index}"

    def _maybe_rotate(self) -> None:
        if not self.log_path.exists():
            return
        if self.log_path.stat().st_size < self._max_bytes:
            return

        oldest = self._backup(self._backup_count)
        if oldest.exists():
            oldest.unlink()
        for i in range(self._backup_count - 1, 0, -1):
            if self._backup(i).exists():
                self._backup(i).rename(self._backup(i + 1))
        self.log_path.rename(self._backup(1))

    def log(self, event: AuditEvent) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._maybe_rotate()
        with open(self.log_path, "a") as f:
            f.write(event.model_dump_json() + "\n")
