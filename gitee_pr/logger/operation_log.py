"""
Operation log for the Gitee PR gateway.

Keeps the most recent protocol operations in a bounded in-memory ring buffer
(newest first) and, when a log directory is set, also appends every entry to a
JSON-lines file for later analysis.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

_oplog_log = logging.getLogger("gitee_pr.logger.operation_log")

DEFAULT_CAPACITY = 1000
REDACTED = "***"
SECRET_KEYS = frozenset({"access_token", "password", "client_secret"})


def redact_secrets(value: Any) -> Any:
    """Return a copy of ``value`` with secret fields replaced by ``***``."""
    if isinstance(value, dict):
        return {
            key: REDACTED if key in SECRET_KEYS and item is not None else redact_secrets(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact_secrets(item) for item in value]
    return value


def _serialize(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(redact_secrets(value), ensure_ascii=False, default=str)


@dataclass(frozen=True)
class OperationLogEntry:
    id: int
    created_at: str
    method: str
    params: str | None
    result: str | None
    error: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "method": self.method,
            "params": self.params,
            "result": self.result,
            "error": self.error,
        }


class OperationLog:
    """Bounded, newest-first record of processed operations."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        log_dir: str | None = None,
        file_name: str = "operations",
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._entries: deque[OperationLogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._next_id = 1
        self._file_name = file_name
        self.log_dir: str | None = None
        self.log_file_path: str | None = None
        if log_dir:
            self.set_log_dir(log_dir)

    def set_log_dir(self, log_dir: str) -> str:
        """Attach the JSON-lines file sink under ``log_dir``; returns the resolved directory."""
        resolved = os.path.abspath(os.path.expanduser(log_dir))
        os.makedirs(resolved, exist_ok=True)

        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        run_id = str(uuid.uuid4())[:8]
        with self._lock:
            self.log_dir = resolved
            self.log_file_path = os.path.join(
                resolved, f"{self._file_name}_{timestamp}_{run_id}.jsonl"
            )
        return resolved

    def record(
        self,
        method: str,
        params: Any = None,
        result: Any = None,
        error: Any = None,
    ) -> OperationLogEntry:
        """Append one operation; evicts the oldest entry once at capacity."""
        with self._lock:
            entry = OperationLogEntry(
                id=self._next_id,
                created_at=datetime.now(timezone.utc).isoformat(),
                method=method,
                params=_serialize(params),
                result=_serialize(result),
                error=_serialize(error),
            )
            self._next_id += 1
            self._entries.appendleft(entry)
            log_file_path = self.log_file_path

        if log_file_path is not None:
            try:
                with open(log_file_path, "a", encoding="utf-8") as f:
                    json.dump(entry.to_dict(), f, ensure_ascii=False)
                    f.write("\n")
            except OSError as e:
                # The in-memory record stands even when the file sink is unwritable.
                _oplog_log.warning(
                    "operation_log_write_failed path=%s error=%s",
                    log_file_path,
                    e,
                    extra={"path": log_file_path},
                )
        return entry

    def entries(self, limit: int = 50, offset: int = 0) -> list[OperationLogEntry]:
        """Newest-first page of entries."""
        with self._lock:
            snapshot = list(self._entries)
        return snapshot[offset : offset + limit]

    @property
    def total(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.total
