"""Structured logging and observability helpers."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from crossbake.models import VariantKey


@dataclass(slots=True)
class StructuredLogger:
    records: list[dict[str, Any]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def log(
        self,
        *,
        operation: str,
        target: str | None,
        linkage: str | None,
        profile: str | None,
        phase: str | None,
        message: str,
        level: str = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        record: dict[str, Any] = {
            "level": level,
            "operation": operation,
            "target": target,
            "linkage": linkage,
            "profile": profile,
            "phase": phase,
            "message": message,
        }
        if extra is not None:
            record["extra"] = extra
        with self._lock:
            self.records.append(record)

    def log_variant(
        self,
        key: VariantKey,
        *,
        phase: str,
        message: str,
        level: str = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.log(
            operation="matrix",
            target=key.platform,
            linkage=key.linkage,
            profile=key.profile,
            phase=phase,
            message=message,
            level=level,
            extra=extra,
        )

    def records_for_variant(self, key: VariantKey) -> list[dict[str, Any]]:
        with self._lock:
            return [
                record
                for record in self.records
                if record.get("target") == key.platform
                and record.get("linkage") == key.linkage
                and record.get("profile") == key.profile
            ]

    def records_for_phase(self, phase: str) -> list[dict[str, Any]]:
        with self._lock:
            return [record for record in self.records if record.get("phase") == phase]

    def to_json_lines(self, path: str | Path) -> Path:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            lines = [json.dumps(record, sort_keys=True, default=str) for record in self.records]
        output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return output_path
