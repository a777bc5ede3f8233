"""Filesystem helpers for grouping agents by working directory."""

from __future__ import annotations

import os
from collections.abc import Iterable
from pathlib import Path


def compute_path_lca(paths: Iterable[str | Path | None]) -> str | None:
    """Return the deepest directory shared by every path.

    Returns None for empty input, for paths on different roots, and when the
    only shared directory is the filesystem root itself.
    """
    resolved = [Path(p).resolve() for p in paths if p]
    if not resolved:
        return None
    if len(resolved) == 1:
        return str(resolved[0])

    common: list[str] = []
    for segments in zip(*(p.parts for p in resolved)):
        first = os.path.normcase(segments[0])
        if any(os.path.normcase(s) != first for s in segments[1:]):
            break
        common.append(segments[0])

    if len(common) <= 1:
        return None
    return str(Path(*common))


def same_path(left: str | Path | None, right: str | Path | None) -> bool:
    """Compare two paths after resolution (case-insensitive where the OS is)."""
    if not left or not right:
        return False
    return os.path.normcase(str(Path(left).resolve())) == os.path.normcase(
        str(Path(right).resolve())
    )
