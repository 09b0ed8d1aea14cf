"""Data types shared by the chunker, parser and applier."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Part:
    """A numbered slice of a file's lines (1-indexed)."""
    part_id: int
    content: str

    def to_dict(self) -> dict:
        return {"part_id": self.part_id, "content": self.content}


@dataclass
class ChunkedFile:
    """A file split into consecutive parts.

    ``"\\n".join(part.content for part in parts)`` plus a final newline
    when ``trailing_newline`` is set reproduces the file exactly.
    """
    file_path: str
    parts: list[Part] = field(default_factory=list)
    trailing_newline: bool = False
    # part count of the unfiltered file; survives narrowing
    total_parts: int = 0

    def __post_init__(self) -> None:
        if not self.total_parts:
            self.total_parts = len(self.parts)

    @property
    def part_count(self) -> int:
        return len(self.parts)

    def part_ids(self) -> list[int]:
        return [p.part_id for p in self.parts]

    def to_dict(self) -> dict:
        return {
            "file_path": self.file_path,
            "parts": [p.to_dict() for p in self.parts],
        }


# file path -> requested part ids
PartSelection = dict[str, set[int]]


@dataclass
class UpdatedFile:
    """Replacement parts for an existing file, keyed by part id."""
    file_path: str
    parts: list[Part] = field(default_factory=list)


@dataclass
class NewFile:
    """A whole new file, written without chunking."""
    file_path: str
    content: str


@dataclass
class PatchResult:
    """Normalized output of either response decoder."""
    updated: list[UpdatedFile] = field(default_factory=list)
    created: list[NewFile] = field(default_factory=list)
    free_text: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.updated or self.created or self.free_text.strip())
