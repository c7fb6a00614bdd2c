"""Structured operation logging for hayai.

Every CLI command runs inside :meth:`StructuredLogger.operation`, which emits
one JSON object per line to ``<logs_dir>/operations.jsonl`` describing what
was requested and how it ended. The log is an audit aid only: when the
directory cannot be created or a write fails the logger disables itself and
commands carry on.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)

OPERATIONS_LOG = "operations.jsonl"


def _json_safe(value: object) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return str(value)


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(slots=True)
class OperationScope:
    """Collects steps and the final result for one operation."""

    command: str
    args: dict[str, Any] = field(default_factory=dict)
    target: dict[str, Any] = field(default_factory=dict)
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    steps: list[dict[str, Any]] = field(default_factory=list)
    result: dict[str, Any] | None = None

    def add_step(self, name: str, *, status: str = "success", detail: object = None) -> None:
        """Record an intermediate step."""
        step: dict[str, Any] = {"name": name, "status": status, "at": _timestamp()}
        if detail is not None:
            step["detail"] = _json_safe(detail)
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
        **extra: object,
    ) -> None:
        self._set_result("success", message, changed=changed, context=context, extra=extra)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] = (),
        errors: Sequence[str] = (),
        changed: int = 0,
        context: Mapping[str, object] | None = None,
        **extra: object,
    ) -> None:
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            context=context,
            extra=extra,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
        **extra: object,
    ) -> None:
        self._set_result(
            "error",
            message,
            errors=list(errors) if errors else [message],
            rc=rc,
            context=context,
            extra=extra,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] = (),
        errors: Sequence[str] = (),
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
        extra: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, Any] = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": [str(item) for item in warnings],
            "errors": [str(item) for item in errors],
        }
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = _json_safe(context)
        for key, value in (extra or {}).items():
            result[key] = _json_safe(value)
        self.result = result


class StructuredLogger:
    """Append operation records to a JSON-lines file."""

    def __init__(self, log_dir: Path) -> None:
        self._log_dir = Path(log_dir)
        self._operations_log_path = self._log_dir / OPERATIONS_LOG
        self._enabled = True
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.warning("Operation log disabled; cannot create %s: %s", self._log_dir, exc)
            self._enabled = False

    @property
    def path(self) -> Path:
        return self._operations_log_path

    @property
    def enabled(self) -> bool:
        return self._enabled

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Run a block as a logged operation."""
        scope = OperationScope(
            command=command,
            args=_json_safe(dict(args or {})),
            target=_json_safe(dict(target or {})),
        )
        started_at = _timestamp()
        started = time.monotonic()
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"{command} aborted: {exc or type(exc).__name__}")
            raise
        finally:
            if scope.result is None:
                scope.success(f"{command} completed.")
            self._write(
                {
                    "id": scope.op_id,
                    "command": scope.command,
                    "args": scope.args,
                    "target": scope.target,
                    "started_at": started_at,
                    "finished_at": _timestamp(),
                    "duration_ms": round((time.monotonic() - started) * 1000, 3),
                    "steps": scope.steps,
                    "result": scope.result,
                }
            )

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False) + "\n")
        except OSError as exc:
            LOGGER.warning("Operation log disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
