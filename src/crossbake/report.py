"""Output catalog report: export and digest verification across runs."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import cbor2

from crossbake.models import OutputCatalog, RunStatus

MismatchReason = Literal["missing_actual", "unexpected_actual", "value_mismatch"]


@dataclass(frozen=True, slots=True)
class DigestMismatch:
    key: str
    reason: MismatchReason
    expected: str | None
    actual: str | None
    hint: str


@dataclass(frozen=True, slots=True)
class VerificationResult:
    ok: bool
    mismatches: tuple[DigestMismatch, ...] = ()


@dataclass(frozen=True, slots=True)
class CatalogReport:
    name: str
    version: str
    status: RunStatus
    entries: dict[str, dict[str, Any]] = field(default_factory=dict)
    schema_version: int = 1

    @classmethod
    def from_catalog(cls, catalog: OutputCatalog) -> CatalogReport:
        entries: dict[str, dict[str, Any]] = {}
        for attribute, outcome in catalog.by_attribute().items():
            key = outcome.key
            entry: dict[str, Any] = {
                "platform": key.platform,
                "linkage": key.linkage,
                "profile": key.profile,
                "packaged": key.packaged,
                "ok": outcome.ok,
            }
            if outcome.artifact is not None:
                entry["target"] = outcome.artifact.target
                entry["artifact_sha256"] = outcome.artifact.sha256
                entry["artifact_path"] = str(outcome.artifact.path)
            if outcome.image is not None:
                entry["image"] = outcome.image.reference
                entry["command"] = list(outcome.image.command)
                if outcome.image.archive_path is not None:
                    entry["image_path"] = str(outcome.image.archive_path)
            if outcome.error is not None:
                entry["error"] = outcome.error.to_dict()
            if outcome.packaging_error is not None:
                entry["packaging_error"] = outcome.packaging_error.to_dict()
            entries[attribute] = entry
        return cls(
            name=catalog.manifest.name,
            version=catalog.manifest.version,
            status=catalog.status,
            entries=entries,
        )

    @property
    def digests(self) -> dict[str, str]:
        return {
            attribute: entry["artifact_sha256"]
            for attribute, entry in sorted(self.entries.items())
            if "artifact_sha256" in entry
        }

    def to_json(self, path: str | Path | None = None) -> str:
        encoded = json.dumps(self._payload(), indent=2, sort_keys=True) + "\n"
        if path is not None:
            output_path = Path(path)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(encoded, encoding="utf-8")
        return encoded

    def to_cbor(self, path: str | Path | None = None) -> bytes:
        encoded = cbor2.dumps(self._payload(), canonical=True)
        if path is not None:
            Path(path).write_bytes(encoded)
        return encoded

    def verify(self, expected: dict[str, str]) -> VerificationResult:
        """Compare artifact digests with *expected* from an earlier run."""
        actual = self.digests
        mismatches: list[DigestMismatch] = []
        for key, expected_value in sorted(expected.items()):
            if key not in actual:
                mismatches.append(
                    DigestMismatch(
                        key=key,
                        reason="missing_actual",
                        expected=expected_value,
                        actual=None,
                        hint="This run did not produce the artifact.",
                    ),
                )
                continue
            if actual[key] != expected_value:
                mismatches.append(
                    DigestMismatch(
                        key=key,
                        reason="value_mismatch",
                        expected=expected_value,
                        actual=actual[key],
                        hint="Check toolchain identity and source hash for drift.",
                    ),
                )
        for key, actual_value in actual.items():
            if key in expected:
                continue
            mismatches.append(
                DigestMismatch(
                    key=key,
                    reason="unexpected_actual",
                    expected=None,
                    actual=actual_value,
                    hint="Expected set does not include this artifact.",
                ),
            )
        return VerificationResult(ok=not mismatches, mismatches=tuple(mismatches))

    def _payload(self) -> dict[str, object]:
        return {
            "schema_version": self.schema_version,
            "name": self.name,
            "version": self.version,
            "status": self.status,
            "entries": dict(sorted(self.entries.items())),
        }


def read_digests(path: str | Path) -> dict[str, str]:
    """Load the artifact digests recorded in a previously written JSON report."""
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    entries = payload.get("entries", {}) if isinstance(payload, dict) else {}
    return {
        attribute: entry["artifact_sha256"]
        for attribute, entry in entries.items()
        if isinstance(entry, dict) and "artifact_sha256" in entry
    }
