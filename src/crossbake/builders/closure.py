"""Runtime dependency closure discovery for dynamically linked binaries."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path


def parse_ldd_output(output: str) -> tuple[Path, ...]:
    paths: list[Path] = []
    for line in output.splitlines():
        line = line.strip()
        if "=>" in line:
            resolved = line.split("=>", 1)[1].strip().split(" ", 1)[0]
        else:
            resolved = line.split(" ", 1)[0]
        if resolved.startswith("/") and Path(resolved) not in paths:
            paths.append(Path(resolved))
    return tuple(sorted(paths))


def runtime_closure(binary: Path, *, tool: str = "ldd") -> tuple[Path, ...] | None:
    """Return the shared libraries *binary* loads, () when it has none.

    Returns None when the closure cannot be determined on this host.
    """
    if shutil.which(tool) is None:
        return None
    result = subprocess.run(
        [tool, str(binary)],
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        # Static executables make ldd exit non-zero.
        return ()
    return parse_ldd_output(result.stdout)
