"""JSONL logging for memory observability."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    user_id: str | None = None
    project_id: str | None = None
    key: str | None = None
    outcome: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class JSONLLogger:
    """Logger that writes structured memory events in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "memory.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".firefly" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def _rotate_if_needed(self) -> None:
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), default=str) + "\n")

    def log(
        self,
        event: str,
        *,
        user_id: str | None = None,
        project_id: str | None = None,
        key: str | None = None,
        outcome: str | None = None,
        duration_ms: float | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            user_id=user_id,
            project_id=project_id,
            key=key,
            outcome=outcome,
            duration_ms=duration_ms,
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_memory_op(
        self,
        user_id: str,
        op: str,
        key: str,
        outcome: str,
        *,
        project_id: str | None = None,
        error: str | None = None,
    ) -> None:
        """Log the outcome of one applied memory operation."""
        self.log(
            "memory_op",
            user_id=user_id,
            project_id=project_id,
            key=key,
            outcome=outcome,
            error=error,
            op=op,
        )

    def log_retrieval(
        self,
        user_id: str,
        *,
        project_id: str | None = None,
        mode: str,
        core: int,
        normal: int,
        sensitive: int,
    ) -> None:
        """Log the shape of a retrieval result."""
        self.log(
            "retrieval",
            user_id=user_id,
            project_id=project_id,
            mode=mode,
            core=core,
            normal=normal,
            sensitive=sensitive,
        )

    def log_decay_cycle(
        self,
        processed: int,
        updated: int,
        failed: int,
        *,
        duration_ms: float | None = None,
        user_id: str | None = None,
        project_id: str | None = None,
    ) -> None:
        """Log a completed decay pass."""
        self.log(
            "decay_cycle",
            user_id=user_id,
            project_id=project_id,
            duration_ms=duration_ms,
            processed=processed,
            updated=updated,
            failed=failed,
        )


# Global logger instance
_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Get the global logger instance."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Configure and return the global logger."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
    return _logger
