"""Exclusion-driven source filtering with gitignore-style patterns.

Rules are evaluated in declaration order and the last matching rule wins, so
``"*.lock"`` followed by ``"!Cargo.lock"`` drops every lockfile but the
primary one. Everything not excluded is kept, which means new source files
are picked up without touching the rule set.
"""

from __future__ import annotations

import hashlib
import os
import re
import shutil
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from crossbake.errors import ConfigurationError, FilesystemError
from crossbake.models import SourceTree

GITIGNORE = ".gitignore"
ALWAYS_EXCLUDED = ("/.git",)


def default_excludes(manifest: str = "Cargo.toml") -> tuple[str, ...]:
    """Default exclusion set for a project whose primary manifest is *manifest*."""
    manifest_path = PurePosixPath(manifest)
    lockfile = manifest_path.with_suffix(".lock").name
    return (
        "*.lock",
        f"!{lockfile}",
        f"*{manifest_path.suffix}",
        f"!{manifest_path.name}",
        "*.md",
        "*.nix",
        "/.github",
        "/.gitlab-ci.yml",
        "/.circleci",
        "LICENSE",
        "LICENSE-*",
        "COPYING",
    )


@dataclass(frozen=True, slots=True)
class ExclusionRule:
    pattern: str
    regex: re.Pattern[str]
    negated: bool = False
    anchored: bool = False
    dir_only: bool = False
    base: str = ""

    def matches(self, relpath: str, *, is_dir: bool) -> bool:
        if self.dir_only and not is_dir:
            return False
        if self.base:
            prefix = self.base + "/"
            if not relpath.startswith(prefix):
                return False
            relpath = relpath[len(prefix):]
        if self.anchored:
            return self.regex.fullmatch(relpath) is not None
        return self.regex.fullmatch(relpath.rsplit("/", 1)[-1]) is not None


def compile_rule(pattern: str, *, base: str = "") -> ExclusionRule:
    raw = pattern
    negated = pattern.startswith("!")
    if negated:
        pattern = pattern[1:]
    dir_only = pattern.endswith("/")
    pattern = pattern.rstrip("/")
    anchored = "/" in pattern
    pattern = pattern.lstrip("/")
    if not pattern:
        raise ConfigurationError(
            "Exclusion pattern is empty.",
            context={"operation": "filter_source", "pattern": raw},
        )
    return ExclusionRule(
        pattern=raw,
        regex=re.compile(_translate(pattern, raw=raw)),
        negated=negated,
        anchored=anchored,
        dir_only=dir_only,
        base=base,
    )


def parse_rules(lines: Iterable[str], *, base: str = "") -> list[ExclusionRule]:
    rules: list[ExclusionRule] = []
    for line in lines:
        stripped = line.rstrip("\n").rstrip()
        if not stripped or stripped.startswith("#"):
            continue
        rules.append(compile_rule(stripped, base=base))
    return rules


def is_excluded(relpath: str, rules: Sequence[ExclusionRule], *, is_dir: bool) -> bool:
    excluded = False
    for rule in rules:
        if rule.matches(relpath, is_dir=is_dir):
            excluded = not rule.negated
    return excluded


def filter_source(
    root: str | Path,
    excludes: Sequence[str] | None = None,
    *,
    manifest: str = "Cargo.toml",
    honor_gitignore: bool = True,
) -> SourceTree:
    """Return the build-relevant subset of the tree under *root*."""
    root_path = Path(root)
    if not root_path.is_dir() or not os.access(root_path, os.R_OK | os.X_OK):
        raise FilesystemError(
            "Source root does not exist or is not a readable directory.",
            hint="Point the orchestrator at the project checkout.",
            context={"operation": "filter_source", "root": str(root_path)},
        )
    if excludes is None:
        excludes = default_excludes(manifest)
    explicit = parse_rules((*ALWAYS_EXCLUDED, *excludes))

    kept: list[str] = []
    scoped: dict[str, list[ExclusionRule]] = {}
    for dirpath, dirnames, filenames in os.walk(root_path, onerror=_raise_walk_error):
        reldir = Path(dirpath).relative_to(root_path).as_posix()
        reldir = "" if reldir == "." else reldir
        inherited = scoped.get(_parent(reldir), []) if reldir else []
        local = list(inherited)
        if honor_gitignore and GITIGNORE in filenames:
            local.extend(_read_gitignore(Path(dirpath) / GITIGNORE, base=reldir))
        scoped[reldir] = local
        rules = [*local, *explicit]

        dirnames[:] = sorted(
            name for name in dirnames if not is_excluded(_join(reldir, name), rules, is_dir=True)
        )
        for name in sorted(filenames):
            relpath = _join(reldir, name)
            if not is_excluded(relpath, rules, is_dir=False):
                kept.append(relpath)

    files = tuple(sorted(kept))
    return SourceTree(
        root=root_path,
        files=files,
        content_hash=tree_hash(root_path, files),
        manifest=manifest,
    )


def tree_hash(root: Path, files: Sequence[str]) -> str:
    digest = hashlib.sha256()
    for relpath in sorted(files):
        try:
            payload = (root / relpath).read_bytes()
        except OSError as exc:
            raise FilesystemError(
                "Source file is not readable.",
                context={"operation": "filter_source", "path": relpath, "error": str(exc)},
            ) from exc
        digest.update(relpath.encode("utf-8"))
        digest.update(b"\0")
        digest.update(hashlib.sha256(payload).hexdigest().encode("ascii"))
        digest.update(b"\n")
    return digest.hexdigest()


def stage_source(source: SourceTree, dest: str | Path) -> SourceTree:
    """Copy the filtered files into *dest* so builds never see excluded inputs."""
    dest_path = Path(dest)
    try:
        if dest_path.exists():
            shutil.rmtree(dest_path)
        dest_path.mkdir(parents=True)
        for relpath in source.files:
            target = dest_path / relpath
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source.root / relpath, target)
    except OSError as exc:
        raise FilesystemError(
            "Cannot stage the filtered source tree.",
            context={"operation": "stage_source", "dest": str(dest_path), "error": str(exc)},
        ) from exc
    return SourceTree(
        root=dest_path,
        files=source.files,
        content_hash=source.content_hash,
        manifest=source.manifest,
    )


def _translate(pattern: str, *, raw: str) -> str:
    out: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                if pattern.startswith("**/", i):
                    out.append("(?:.*/)?")
                    i += 3
                else:
                    out.append(".*")
                    i += 2
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 1)
            body = pattern[i + 1:end] if end != -1 else ""
            if end == -1 or not body or body == "!":
                raise ConfigurationError(
                    "Exclusion pattern has an unterminated or empty character class.",
                    context={"operation": "filter_source", "pattern": raw},
                )
            if body.startswith("!"):
                body = "^" + body[1:]
            out.append("[" + body.replace("\\", "\\\\") + "]")
            i = end + 1
            continue
        elif c == "\\" and i + 1 < n:
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


def _read_gitignore(path: Path, *, base: str) -> list[ExclusionRule]:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        raise FilesystemError(
            "Cannot read .gitignore.",
            context={"operation": "filter_source", "path": str(path), "error": str(exc)},
        ) from exc
    return parse_rules(lines, base=base)


def _raise_walk_error(exc: OSError) -> None:
    raise FilesystemError(
        "Source tree is not readable.",
        context={"operation": "filter_source", "path": str(exc.filename), "error": str(exc)},
    ) from exc


def _join(reldir: str, name: str) -> str:
    return f"{reldir}/{name}" if reldir else name


def _parent(reldir: str) -> str:
    return reldir.rsplit("/", 1)[0] if "/" in reldir else ""
