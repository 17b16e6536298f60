from __future__ import annotations

from pathlib import Path

from ..errors import IOFailure, PathEscape


def validate_path(requested_path: str, root: Path) -> Path:
    if '\x00' in requested_path:
        raise PathEscape()
    relative = requested_path.replace('\\', '/').lstrip('/')
    try:
        candidate = (root / relative).resolve(strict=False)
    except (OSError, RuntimeError) as exc:
        raise IOFailure() from exc
    if root != candidate and root not in candidate.parents:
        raise PathEscape()
    return candidate


class PathResolver:
    """Maps untrusted request paths onto the served root.

    Symlinks are followed during canonicalization, so a link whose target
    lies outside the root is rejected like any other escape.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).expanduser().resolve()

    def resolve(self, request_path: str) -> Path:
        return validate_path(request_path, self.root)

    def child(self, name: str) -> Path:
        """Return ``root/name`` for a single path segment, leaving a final symlink unresolved."""
        if not name or name in {'.', '..'} or '/' in name or '\\' in name or '\x00' in name:
            raise PathEscape()
        target = self.root / name
        if target.parent != self.root:
            raise PathEscape()
        return target
