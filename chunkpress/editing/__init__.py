"""Chunked patch protocol — chunking, part selection, parsing, applying."""

from .models import (
    Part, ChunkedFile, PartSelection, UpdatedFile, NewFile, PatchResult,
)
from .chunker import (
    chunk_text, chunk_file, chunk_files, collect_files, format_chunks,
    reconstruct, MAX_FILE_SIZE,
)
from .part_selector import (
    filter_chunks, parse_part_selection, normalize_selection, SelectionResult,
)
from .patch_parser import parse_patch, XmlPatchDecoder, JsonPatchDecoder
from .patch_applier import PatchApplier, ApplyPlan, ApplyResult, resolve_path

__all__ = [
    "Part", "ChunkedFile", "PartSelection", "UpdatedFile", "NewFile", "PatchResult",
    "chunk_text", "chunk_file", "chunk_files", "collect_files", "format_chunks",
    "reconstruct", "MAX_FILE_SIZE",
    "filter_chunks", "parse_part_selection", "normalize_selection", "SelectionResult",
    "parse_patch", "XmlPatchDecoder", "JsonPatchDecoder",
    "PatchApplier", "ApplyPlan", "ApplyResult", "resolve_path",
]
