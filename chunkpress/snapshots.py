"""
Snapshots — file backups that make a run (rollback) or a user-chosen
moment (checkpoint) reversible.

Both managers share :class:`SnapshotSet`, which owns one backup directory
and one JSON record inside it.  They differ only in retention:

* rollback snapshots are consumed by a single restore and then deleted;
* checkpoint snapshots survive restores and are replaced wholesale by
  the next checkpoint.
"""

from __future__ import annotations

import enum
import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from typing import Iterable
from urllib.parse import quote

from .errors import NoChangesToRollback, NoCheckpointToRevert, PressError

logger = logging.getLogger(__name__)

ROLLBACK_DIRNAME = ".rollback"
ROLLBACK_RECORD = "rollback.json"
CHECKPOINT_DIRNAME = ".checkpoint"
CHECKPOINT_RECORD = "checkpoint.json"

# Backup marker for a path that did not exist when the snapshot was taken.
NO_BACKUP = ""


class Retention(enum.Enum):
    CONSUME = "consume"
    KEEP = "keep"


def flat_backup_name(path: str) -> str:
    """Collision-free single-component name for *path*.

    Separators and any other unsafe characters are percent-encoded, so two
    distinct paths never map to the same backup file.
    """
    abs_path = os.path.abspath(path)
    rel = os.path.relpath(abs_path)
    if rel.startswith(os.pardir):
        rel = os.path.splitdrive(abs_path)[1].lstrip("/\\")
    return quote(rel.replace(os.sep, "/"), safe="")


def _write_json(filepath: str, data: dict) -> None:
    tmp = filepath + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    os.replace(tmp, filepath)


@dataclass
class RestoreReport:
    restored: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)


class SnapshotSet:
    """A backup directory plus the record describing it."""

    def __init__(self, root_dir: str, record_name: str, retention: Retention,
                 missing_error: type[PressError]) -> None:
        self.root_dir = root_dir
        self.files_dir = os.path.join(root_dir, "files")
        self.record_path = os.path.join(root_dir, record_name)
        self.retention = retention
        self._missing_error = missing_error

    def exists(self) -> bool:
        return os.path.isfile(self.record_path)

    def reset(self) -> None:
        """Drop any previous snapshot and create an empty backup area."""
        if os.path.isdir(self.root_dir):
            shutil.rmtree(self.root_dir)
        os.makedirs(self.files_dir)

    def capture(self, paths: Iterable[str]) -> list[tuple[str, str]]:
        """Copy each existing path into the backup area.

        Returns ``(original, backup)`` pairs with absolute paths; paths that
        do not exist are recorded with the :data:`NO_BACKUP` marker.
        """
        pairs: list[tuple[str, str]] = []
        for path in paths:
            original = os.path.abspath(path)
            if not os.path.isfile(original):
                pairs.append((original, NO_BACKUP))
                continue
            backup = os.path.join(self.files_dir, flat_backup_name(original))
            shutil.copy2(original, backup)
            pairs.append((original, backup))
        return pairs

    def write_record(self, data: dict) -> None:
        _write_json(self.record_path, data)

    def read_record(self) -> dict:
        if not self.exists():
            raise self._missing_error()
        try:
            with open(self.record_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise self._missing_error(
                f"Snapshot record {self.record_path} is unreadable: {exc}") from exc
        if not isinstance(data, dict):
            raise self._missing_error(
                f"Snapshot record {self.record_path} is unreadable")
        return data

    def restore(self, pairs: Iterable) -> RestoreReport:
        """Copy backups over their originals.

        A :data:`NO_BACKUP` entry means the path did not exist at snapshot
        time, so it is removed if present.
        """
        report = RestoreReport()
        for original, backup in pairs:
            if backup == NO_BACKUP:
                if os.path.isfile(original):
                    os.remove(original)
                    report.deleted.append(original)
                continue
            if not os.path.isfile(backup):
                logger.warning("[Snapshot] Backup missing for %s: %s",
                               original, backup)
                continue
            parent = os.path.dirname(original)
            if parent:
                os.makedirs(parent, exist_ok=True)
            shutil.copy2(backup, original)
            report.restored.append(original)
        return report

    def finish_restore(self) -> None:
        if self.retention is Retention.CONSUME:
            self.discard()

    def discard(self) -> None:
        if os.path.isdir(self.root_dir):
            shutil.rmtree(self.root_dir)


# ---------------------------------------------------------------------------
# Rollback
# ---------------------------------------------------------------------------

class RollbackManager:
    """One-shot undo for the most recent mutating run."""

    def __init__(self, output_dir: str) -> None:
        self._snapshots = SnapshotSet(
            os.path.join(output_dir, ROLLBACK_DIRNAME), ROLLBACK_RECORD,
            Retention.CONSUME, NoChangesToRollback,
        )

    @property
    def record_path(self) -> str:
        return self._snapshots.record_path

    def has_record(self) -> bool:
        return self._snapshots.exists()

    def save(self, new_files: Iterable[str], modified_files: Iterable[str]) -> None:
        """Snapshot *modified_files* before they are overwritten.

        Must complete before the first write of the run.  Replaces the
        record of any earlier run.
        """
        self._snapshots.reset()
        pairs = self._snapshots.capture(modified_files)
        record = {
            "new_files": sorted({os.path.abspath(p) for p in new_files}),
            "rollback_files": [list(pair) for pair in pairs],
        }
        self._snapshots.write_record(record)
        logger.info("[Rollback] Saved %d backups, %d new files tracked",
                    len(pairs), len(record["new_files"]))

    def rollback(self) -> RestoreReport:
        """Undo the last run, then delete its record.

        Raises :class:`NoChangesToRollback` without touching the disk when
        there is no record.
        """
        record = self._snapshots.read_record()
        deleted: list[str] = []
        for path in record.get("new_files", []):
            if os.path.isfile(path):
                os.remove(path)
                deleted.append(path)
                logger.info("[Rollback] Deleted new file %s", path)

        report = self._snapshots.restore(record.get("rollback_files", []))
        report.deleted = deleted + report.deleted
        for path in report.restored:
            logger.info("[Rollback] Restored %s", path)
        self._snapshots.finish_restore()
        return report


# ---------------------------------------------------------------------------
# Checkpoint
# ---------------------------------------------------------------------------

def expand_paths(paths: Iterable[str], exclude: Iterable[str] = ()) -> list[str]:
    """Expand directories into the files they contain (recursively)."""
    excluded = [os.path.abspath(p) for p in exclude]

    def _excluded(path: str) -> bool:
        abs_path = os.path.abspath(path)
        return any(abs_path == e or abs_path.startswith(e + os.sep)
                   for e in excluded)

    files: list[str] = []
    for path in paths:
        if _excluded(path):
            continue
        if os.path.isfile(path):
            files.append(path)
        elif os.path.isdir(path):
            for root, dirs, names in os.walk(path):
                dirs[:] = sorted(d for d in dirs
                                 if not _excluded(os.path.join(root, d)))
                files.extend(os.path.join(root, n) for n in sorted(names)
                             if not _excluded(os.path.join(root, n)))
        else:
            logger.warning("[Checkpoint] Path not found, skipping: %s", path)
    return files


class CheckpointManager:
    """User-invoked snapshot that survives runs and repeated reverts."""

    def __init__(self, output_dir: str) -> None:
        self._output_dir = output_dir
        self._snapshots = SnapshotSet(
            os.path.join(output_dir, CHECKPOINT_DIRNAME), CHECKPOINT_RECORD,
            Retention.KEEP, NoCheckpointToRevert,
        )

    @property
    def record_path(self) -> str:
        return self._snapshots.record_path

    def has_checkpoint(self) -> bool:
        return self._snapshots.exists()

    def checkpoint(self, paths: Iterable[str]) -> list[str]:
        """Replace any previous checkpoint with a snapshot of *paths*.

        Returns the list of files captured.
        """
        files = expand_paths(paths, exclude=[self._output_dir])
        self._snapshots.reset()
        pairs = self._snapshots.capture(files)
        self._snapshots.write_record(
            {"checkpoint_files": [list(pair) for pair in pairs]})
        logger.info("[Checkpoint] Saved %d files", len(pairs))
        return [original for original, _ in pairs]

    def revert(self) -> RestoreReport:
        """Restore every checkpointed file; the checkpoint is kept."""
        record = self._snapshots.read_record()
        report = self._snapshots.restore(record.get("checkpoint_files", []))
        for path in report.restored:
            logger.info("[Checkpoint] Restored %s", path)
        self._snapshots.finish_restore()
        return report
