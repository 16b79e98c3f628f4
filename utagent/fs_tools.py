"""File-system tools scoped to one project directory."""

from __future__ import annotations

import logging
from pathlib import Path

from utagent.governance import RESOURCE_FILE_READ, RESOURCE_FILE_WRITE
from utagent.tool_registry import tool

logger = logging.getLogger(__name__)

_MAX_LISTING = 500


class FileSystemTools:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        candidate = (self.root / path).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise ValueError(f"Path escapes project root: {path}")
        return candidate

    @tool(
        "Read the content of a file",
        params={"path": "File path relative to the project root"},
        resource=RESOURCE_FILE_READ,
    )
    def read_file(self, path: str) -> str:
        target = self._resolve(path)
        if not target.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        return target.read_text(encoding="utf-8")

    @tool(
        "Write content to a file. Create directories if they don't exist. Overwrites existing content.",
        params={
            "path": "File path relative to the project root",
            "content": "Full file content",
        },
        resource=RESOURCE_FILE_WRITE,
    )
    def write_file(self, path: str, content: str) -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        logger.info("FILE_WRITTEN path=%s chars=%d", target, len(content))
        return f"Wrote {len(content)} characters to {path}"

    @tool(
        "List files under a directory, recursively",
        params={"path": "Directory relative to the project root (default: root)"},
        resource=RESOURCE_FILE_READ,
    )
    def list_files(self, path: str = ".") -> str:
        base = self._resolve(path)
        if not base.is_dir():
            raise NotADirectoryError(f"Not a directory: {path}")
        entries = sorted(
            p.relative_to(self.root).as_posix()
            for p in base.rglob("*")
            if p.is_file() and not any(part.startswith(".") for part in p.relative_to(self.root).parts)
        )
        if len(entries) > _MAX_LISTING:
            entries = entries[:_MAX_LISTING] + [f"... ({len(entries) - _MAX_LISTING} more)"]
        return "\n".join(entries) if entries else "(empty)"
