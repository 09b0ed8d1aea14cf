"""
Patch applier — merges replacement parts into the current on-disk files
and writes the results, either over the originals (auto mode) or into a
staging tree.

Application is split in two phases so the caller can snapshot every
target between them:

1. :meth:`PatchApplier.plan` resolves paths, re-chunks the current file
   content and computes every new file body in memory.
2. :meth:`PatchApplier.write` writes the planned bodies, one file at a
   time; a failure on one file does not stop the others.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field

from ..errors import FileTooLarge, UnresolvedPath
from .chunker import MAX_FILE_SIZE, chunk_text, read_text, reconstruct
from .models import Part, PatchResult

logger = logging.getLogger(__name__)

STAGING_DIRNAME = "code"
FREE_TEXT_FILENAME = "response.txt"


@dataclass
class PendingWrite:
    """One file body waiting to be written."""
    target: str
    content: str
    source: str            # path as named by the patch
    is_new: bool = False   # True for whole new files


@dataclass
class ApplyPlan:
    """Everything :meth:`PatchApplier.write` will do."""
    writes: list[PendingWrite] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def existing_targets(self) -> list[str]:
        return [w.target for w in self.writes if os.path.exists(w.target)]

    def new_targets(self) -> list[str]:
        return [w.target for w in self.writes if not os.path.exists(w.target)]


@dataclass
class ApplyResult:
    """Summary of a patch application."""
    modified: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    free_text_path: str | None = None

    @property
    def modified_count(self) -> int:
        return len(self.modified)

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def saved_count(self) -> int:
        return len(self.modified) + len(self.created)


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------

def _norm(path: str) -> str:
    return os.path.normpath(path).replace(os.sep, "/")


def resolve_path(path: str, known_paths: list[str]) -> str | None:
    """Map a path named by the model onto one of *known_paths*.

    Exact match first, then a plain suffix match for responses that drop
    a leading directory.  With several suffix candidates the first one in
    *known_paths* order wins; this is ambiguous when files in different
    directories share a suffix, so the ambiguity is logged.
    """
    target = _norm(path)
    for known in known_paths:
        if known == path or _norm(known) == target:
            return known

    matches = [k for k in known_paths if _norm(k).endswith(target)]
    if not matches:
        return None
    if len(matches) > 1:
        logger.warning(
            "[Patch] Ambiguous path %s matches %d files, using %s",
            path, len(matches), matches[0],
        )
    return matches[0]


def staging_path(staging_root: str, original: str) -> str:
    """Mirror *original* below *staging_root*."""
    rel = os.path.relpath(os.path.abspath(original))
    if rel.startswith(os.pardir):
        rel = os.path.splitdrive(os.path.abspath(original))[1]
    return os.path.join(staging_root, rel.lstrip("/\\"))


def merge_parts(content: str, parts: list[Part], chunk_size: int) -> str:
    """Overlay *parts* on the chunked *content* by part id.

    Ids outside ``1..part_count`` (including the ``0`` sentinel) are
    ignored so a bad id can never shift or truncate the file.
    """
    chunked = chunk_text("", content, chunk_size)
    slots = chunked.parts
    for part in parts:
        if 0 < part.part_id <= len(slots):
            slots[part.part_id - 1] = Part(part.part_id, part.content)
        else:
            logger.warning(
                "[Patch] Ignoring part id %d (file has %d parts)",
                part.part_id, len(slots),
            )
    return reconstruct(chunked)


# ---------------------------------------------------------------------------
# PatchApplier
# ---------------------------------------------------------------------------

class PatchApplier:
    """Apply a :class:`PatchResult` to the working tree."""

    def __init__(self, chunk_size: int, max_file_size: int = MAX_FILE_SIZE) -> None:
        self._chunk_size = chunk_size
        self._max_file_size = max_file_size

    def plan(
        self,
        patch: PatchResult,
        original_paths: list[str],
        output_dir: str,
        auto: bool = False,
    ) -> ApplyPlan:
        """Compute every file body without touching the disk."""
        plan = ApplyPlan()
        staging_root = os.path.join(output_dir, STAGING_DIRNAME)

        # Blocks naming the same file differently are merged in response order
        grouped: dict[str, list[Part]] = {}
        sources: dict[str, str] = {}
        for updated in patch.updated:
            try:
                resolved = resolve_path(updated.file_path, original_paths)
                if resolved is None:
                    raise UnresolvedPath(updated.file_path)
            except UnresolvedPath as exc:
                logger.warning("[Patch] %s", exc)
                plan.unresolved.append(updated.file_path)
                continue
            if resolved in grouped:
                logger.info("[Patch] Merging block %s into %s",
                            updated.file_path, resolved)
            grouped.setdefault(resolved, []).extend(updated.parts)
            sources.setdefault(resolved, updated.file_path)

        for resolved, parts in grouped.items():
            try:
                current = read_text(resolved, self._max_file_size)
            except (OSError, FileTooLarge) as exc:
                logger.warning("[Patch] Cannot read %s: %s", resolved, exc)
                plan.failed[sources[resolved]] = str(exc)
                continue

            content = merge_parts(current, parts, self._chunk_size)
            target = resolved if auto else staging_path(staging_root, resolved)
            plan.writes.append(PendingWrite(target=target, content=content,
                                            source=sources[resolved]))

        for new_file in patch.created:
            plan.writes.append(PendingWrite(target=new_file.file_path,
                                            content=new_file.content,
                                            source=new_file.file_path,
                                            is_new=True))
        return plan

    def write(self, plan: ApplyPlan) -> ApplyResult:
        """Write every planned body; per-file failures are recorded."""
        result = ApplyResult(unresolved=list(plan.unresolved),
                             failed=dict(plan.failed))
        for pending in plan.writes:
            try:
                self._safe_write(pending.target, pending.content)
            except OSError as exc:
                logger.error("[Patch] Write failed for %s: %s",
                             pending.target, exc)
                result.failed[pending.source] = str(exc)
                continue
            if pending.is_new:
                result.created.append(pending.target)
            else:
                result.modified.append(pending.target)
            logger.info("[Patch] Wrote %s", pending.target)
        return result

    def apply(
        self,
        patch: PatchResult,
        original_paths: list[str],
        output_dir: str,
        auto: bool = False,
    ) -> ApplyResult:
        """Plan and write in one go, including the free-text file."""
        result = self.write(self.plan(patch, original_paths, output_dir, auto))
        result.free_text_path = self.write_free_text(patch.free_text, output_dir)
        return result

    @staticmethod
    def write_free_text(text: str, output_dir: str) -> str | None:
        """Write non-empty commentary to ``response.txt``."""
        if not text.strip():
            return None
        os.makedirs(output_dir, exist_ok=True)
        path = os.path.join(output_dir, FREE_TEXT_FILENAME)
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        return path

    @staticmethod
    def _safe_write(file_path: str, content: str) -> None:
        """Write content via temp file + rename, creating parent dirs."""
        abs_path = os.path.abspath(file_path)
        os.makedirs(os.path.dirname(abs_path), exist_ok=True)
        tmp_path = abs_path + ".chunkpress_tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8", errors="surrogateescape",
                      newline="") as f:
                f.write(content)
            shutil.move(tmp_path, abs_path)
        except OSError:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
