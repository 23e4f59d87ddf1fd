"""Helpers for writing generated assets to disk."""

from __future__ import annotations

import asyncio
import base64
import re
from pathlib import Path

from genbatch.core.errors import ValidationAppError

_DATA_URI_PREFIX = re.compile(r"^data:[\w/+.-]+;base64,")


def resolve_output_path(output_file: str, base_dir: str | Path) -> Path:
    """Resolve ``output_file`` under ``base_dir``.

    Relative paths are anchored at ``base_dir``; absolute ones are accepted
    only when they already point inside it.

    Raises:
        ValidationAppError: ``invalid_output_path`` if the resolved path
            leaves ``base_dir`` (``..`` segments, foreign absolute paths,
            symlinks pointing outside).
    """
    root = Path(base_dir).expanduser().resolve()
    path = (root / Path(output_file).expanduser()).resolve()
    if path == root or not path.is_relative_to(root):
        raise ValidationAppError(
            code="invalid_output_path",
            message=f"Output path must be a file inside the output directory: {output_file}",
            details={"field": "output_file"},
        )
    return path


def indexed_filename(base_path: Path, index: int, total: int) -> Path:
    """Name for the ``index``-th of ``total`` outputs sharing one target path.

    A single output keeps the requested name; multiples get ``_01``, ``_02``...
    inserted before the extension.
    """
    if total == 1:
        return base_path
    return base_path.with_name(f"{base_path.stem}_{index + 1:02d}{base_path.suffix}")


def decode_base64_payload(data: str) -> bytes:
    """Decode base64 content, tolerating a ``data:`` URI prefix."""
    return base64.b64decode(_DATA_URI_PREFIX.sub("", data), validate=True)


def _write(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


async def write_bytes(path: Path, content: bytes) -> Path:
    """Write ``content`` to ``path`` off the event loop, creating parents."""
    await asyncio.to_thread(_write, path, content)
    return path
