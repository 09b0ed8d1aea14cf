"""
Chunker — splits files into fixed-size, numbered line groups ("parts")
and serializes chunk sets for the completion service.

The split is a pure function of ``(content, chunk_size)``: the same input
always yields the same part boundaries, so a later pass can address
"part 7" and mean the lines the model saw.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Iterable

from ..errors import FileTooLarge
from .models import ChunkedFile, Part

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024

TEXT_EXTENSIONS = frozenset({
    "txt", "rs", "ts", "js", "go", "json", "py", "cpp", "c", "h", "hpp",
    "css", "html", "md", "yaml", "yml", "toml", "xml", "tsx",
})

_CDATA_END = "]]>"
_CDATA_END_ESCAPED = "]]]]><![CDATA[>"


# ---------------------------------------------------------------------------
# Splitting
# ---------------------------------------------------------------------------

def split_lines(content: str) -> tuple[list[str], bool]:
    """Split *content* on ``\\n``.

    Returns ``(lines, trailing_newline)``.  Carriage returns stay attached
    to their line so CRLF files survive a round trip unchanged.
    """
    if not content:
        return [], False
    trailing = content.endswith("\n")
    body = content[:-1] if trailing else content
    return body.split("\n"), trailing


def chunk_text(file_path: str, content: str, chunk_size: int) -> ChunkedFile:
    """Split *content* into parts of ``chunk_size`` lines.

    ``chunk_size == 0`` means "the whole file is part 1".  An empty file
    has no parts unless ``chunk_size`` is 0.
    """
    if chunk_size < 0:
        raise ValueError(f"chunk_size must be >= 0, got {chunk_size}")

    lines, trailing = split_lines(content)

    if chunk_size == 0:
        return ChunkedFile(
            file_path=file_path,
            parts=[Part(part_id=1, content="\n".join(lines))],
            trailing_newline=trailing,
        )

    parts = [
        Part(part_id=index + 1, content="\n".join(lines[start:start + chunk_size]))
        for index, start in enumerate(range(0, len(lines), chunk_size))
    ]
    return ChunkedFile(file_path=file_path, parts=parts, trailing_newline=trailing)


def reconstruct(chunked: ChunkedFile) -> str:
    """Join the parts of *chunked* back into file content."""
    if not chunked.parts:
        return ""
    content = "\n".join(p.content for p in chunked.parts)
    if chunked.trailing_newline:
        content += "\n"
    return content


def read_text(path: str, max_size: int = MAX_FILE_SIZE) -> str:
    """Read a source file, enforcing the byte ceiling.

    Bytes that are not valid UTF-8 are kept as surrogate escapes, so
    writing the text back with ``errors="surrogateescape"`` reproduces
    them exactly.  Raises :class:`FileTooLarge` above *max_size*;
    ``OSError`` on any stat/read failure.
    """
    size = os.path.getsize(path)
    if size > max_size:
        raise FileTooLarge(path, size, max_size)
    with open(path, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
        return f.read()


def chunk_file(path: str, chunk_size: int,
               max_size: int = MAX_FILE_SIZE) -> ChunkedFile:
    """Read *path* from disk and chunk it."""
    return chunk_text(path, read_text(path, max_size), chunk_size)


def chunk_files(
    paths: Iterable[str],
    chunk_size: int,
    max_size: int = MAX_FILE_SIZE,
) -> tuple[list[ChunkedFile], list[str]]:
    """Chunk every path, skipping files over the size ceiling.

    Returns ``(chunked_files, skipped_paths)``.  Read failures other than
    the size guard propagate.
    """
    chunked: list[ChunkedFile] = []
    skipped: list[str] = []
    for path in paths:
        try:
            chunked.append(chunk_file(path, chunk_size, max_size))
        except FileTooLarge as exc:
            logger.warning("[Chunker] %s", exc)
            skipped.append(path)
    logger.info("[Chunker] Chunked %d files (chunk_size=%d, skipped=%d)",
                len(chunked), chunk_size, len(skipped))
    return chunked, skipped


# ---------------------------------------------------------------------------
# File collection
# ---------------------------------------------------------------------------

def _is_ignored(path: str, ignore: Iterable[str]) -> bool:
    norm = os.path.normpath(path)
    for prefix in ignore:
        prefix = os.path.normpath(prefix)
        if norm == prefix or norm.startswith(prefix.rstrip(os.sep) + os.sep):
            return True
    return False


def collect_files(paths: Iterable[str], ignore: Iterable[str] = ()) -> list[str]:
    """Expand *paths* into the list of text files to process.

    Files are taken as given; directories are walked recursively and only
    known text extensions are kept.  Anything under an ignored prefix is
    skipped.
    """
    ignore = list(ignore)
    files: list[str] = []
    seen: set[str] = set()

    def _add(path: str) -> None:
        if path not in seen:
            seen.add(path)
            files.append(path)

    for path in paths:
        if _is_ignored(path, ignore):
            continue
        if os.path.isfile(path):
            _add(path)
        elif os.path.isdir(path):
            found: list[str] = []
            for root, dirs, names in os.walk(path):
                dirs[:] = sorted(
                    d for d in dirs
                    if not _is_ignored(os.path.join(root, d), ignore)
                )
                for name in names:
                    full = os.path.join(root, name)
                    ext = os.path.splitext(name)[1].lstrip(".").lower()
                    if ext in TEXT_EXTENSIONS and not _is_ignored(full, ignore):
                        found.append(full)
            for full in sorted(found):
                _add(full)
        else:
            logger.warning("[Chunker] Path not found, skipping: %s", path)
    return files


# ---------------------------------------------------------------------------
# Prompt serialization
# ---------------------------------------------------------------------------

def _escape_attr(value: str) -> str:
    return (value.replace("&", "&amp;").replace('"', "&quot;")
            .replace("<", "&lt;").replace(">", "&gt;"))


def _escape_cdata(content: str) -> str:
    return content.replace(_CDATA_END, _CDATA_END_ESCAPED)


def format_chunks(chunks: list[ChunkedFile], fmt: str = "xml") -> str:
    """Render a chunk set in the wire format the model is asked to echo.

    ``xml``::

        <file path="src/a.py" parts="3"><part id="1"><![CDATA[...]]></part>...</file>

    ``json``: ``[{"file_path": ..., "parts": [{"part_id": 1, "content": ...}]}]``
    """
    if fmt == "json":
        return json.dumps([c.to_dict() for c in chunks], indent=2)

    out: list[str] = []
    for chunked in chunks:
        out.append(
            f'<file path="{_escape_attr(chunked.file_path)}" '
            f'parts="{chunked.total_parts}">'
        )
        for part in chunked.parts:
            out.append(
                f'<part id="{part.part_id}"><![CDATA[{_escape_cdata(part.content)}]]></part>'
            )
        out.append("</file>")
    return "\n".join(out)
