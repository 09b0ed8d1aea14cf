"""
Part selector — narrows a chunk set to the parts the first (preprocessor)
pass asked for, shrinking the payload of the second request.

The narrowed set is lossy and only ever used as request payload; merging
always re-reads the original file from disk.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from ..errors import PatchFormatError
from .models import ChunkedFile, PartSelection
from .patch_applier import resolve_path
from .patch_parser import (
    TagClose, TagOpen, TagStreamError, TagText, iter_tag_events,
    load_json_object,
)

logger = logging.getLogger(__name__)


@dataclass
class SelectionResult:
    """Decoded first-pass response."""
    selection: PartSelection = field(default_factory=dict)
    preprocessor_prompt: str = ""


def filter_chunks(chunks: list[ChunkedFile],
                  selection: PartSelection) -> list[ChunkedFile]:
    """Keep only selected parts, preserving order.

    Files not present in *selection*, and files left without parts, are
    dropped.
    """
    narrowed: list[ChunkedFile] = []
    for chunked in chunks:
        wanted = selection.get(chunked.file_path)
        if not wanted:
            continue
        parts = [p for p in chunked.parts if p.part_id in wanted]
        if not parts:
            continue
        narrowed.append(ChunkedFile(
            file_path=chunked.file_path,
            parts=parts,
            trailing_newline=chunked.trailing_newline,
            total_parts=chunked.total_parts,
        ))
    return narrowed


def _parse_id_list(raw: Iterable) -> set[int]:
    ids: set[int] = set()
    for item in raw:
        try:
            value = int(str(item).strip())
        except ValueError:
            continue
        if value > 0:
            ids.add(value)
    return ids


def _decode_xml(text: str) -> SelectionResult:
    result = SelectionResult()
    path: str | None = None
    in_selection = False
    in_note = False
    try:
        for event in iter_tag_events(text):
            if isinstance(event, TagOpen):
                if event.name == "parts_to_edit":
                    in_selection = True
                elif event.name == "file" and in_selection:
                    path = (event.attrs.get("path") or "").strip() or None
                elif event.name == "preprocessor_prompt":
                    in_note = True
            elif isinstance(event, TagText):
                if path and in_selection:
                    ids = _parse_id_list(event.text.split(","))
                    result.selection.setdefault(path, set()).update(ids)
                elif in_note:
                    result.preprocessor_prompt += event.text.strip()
            elif isinstance(event, TagClose):
                if event.name == "file":
                    if path is not None:
                        result.selection.setdefault(path, set())
                    path = None
                elif event.name == "parts_to_edit":
                    in_selection = False
                elif event.name == "preprocessor_prompt":
                    in_note = False
    except TagStreamError as exc:
        if not result.selection:
            raise PatchFormatError(
                f"Part selection is not well-formed tag markup: {exc}") from exc
        logger.warning("[Selector] Selection truncated, keeping %d files: %s",
                       len(result.selection), exc)
    return result


def _decode_json(text: str) -> SelectionResult:
    data = load_json_object(text)
    result = SelectionResult()
    for entry in data.get("parts_to_edit") or []:
        if not isinstance(entry, dict) or not entry.get("file_path"):
            continue
        parts = entry.get("parts") or []
        if not isinstance(parts, list):
            parts = str(parts).split(",")
        result.selection.setdefault(str(entry["file_path"]), set()).update(
            _parse_id_list(parts))
    note = data.get("preprocessor_prompt")
    if isinstance(note, str):
        result.preprocessor_prompt = note
    return result


def parse_part_selection(response: str, fmt: str = "xml") -> SelectionResult:
    """Decode the preprocessor response in either wire format."""
    if fmt == "json":
        result = _decode_json(response)
    elif fmt == "xml":
        result = _decode_xml(response)
    else:
        raise ValueError(f"Unknown response format: {fmt!r}")
    for path, ids in result.selection.items():
        logger.info("[Selector] %s: parts to edit %s", path, sorted(ids))
    if result.preprocessor_prompt:
        logger.debug("[Selector] Preprocessor prompt: %s",
                     result.preprocessor_prompt)
    return result


def normalize_selection(selection: PartSelection,
                        known_paths: list[str]) -> PartSelection:
    """Re-key *selection* onto the known file paths.

    The model may echo a shortened path; keys are resolved the same way
    the applier resolves patch paths.  Unknown keys are dropped.
    """
    normalized: PartSelection = {}
    for path, ids in selection.items():
        resolved = resolve_path(path, known_paths)
        if resolved is None:
            logger.warning("[Selector] Dropping selection for unknown file %s",
                           path)
            continue
        normalized.setdefault(resolved, set()).update(ids)
    return normalized
