"""
Deterministic hashing for change detection.

``hash_tree(root, patterns)`` hashes a directory of source files so the
migration stage can skip sources unchanged since the last successful apply.

Manifesto:
    Hashing must be:
    - **Deterministic:** Same tree → same digest on every machine
    - **Path-sensitive:** Renaming a migration changes the digest
    - **Content-sensitive:** Editing a migration changes the digest

Tags:
    hashing, change-detection, rollout-spine
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable

DEFAULT_TREE_PATTERNS: tuple[str, ...] = ("**/*",)


def hash_tree(root: Path | str, patterns: Iterable[str] = DEFAULT_TREE_PATTERNS) -> str:
    """
    Compute a SHA-256 digest over every file under ``root``.

    Files are visited in sorted order of their POSIX-style relative path.
    Each contributes its relative path, a NUL byte, its bytes and a NUL
    byte, so moving content between files changes the digest.

    Args:
        root: Directory to hash
        patterns: Glob patterns relative to ``root`` selecting files

    Returns:
        Full 64-character hex digest

    Raises:
        FileNotFoundError: If ``root`` is not a directory
    """
    base = Path(root)
    if not base.is_dir():
        raise FileNotFoundError(f"Not a directory: {base}")

    files: set[Path] = set()
    for pattern in patterns:
        files.update(p for p in base.glob(pattern) if p.is_file())

    digest = hashlib.sha256()
    for path in sorted(files, key=lambda p: p.relative_to(base).as_posix()):
        digest.update(path.relative_to(base).as_posix().encode())
        digest.update(b"\0")
        digest.update(path.read_bytes())
        digest.update(b"\0")
    return digest.hexdigest()


__all__ = ["hash_tree", "DEFAULT_TREE_PATTERNS"]
