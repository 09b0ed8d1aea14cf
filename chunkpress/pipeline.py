"""
Press pipeline — one end-to-end run.

    collect files -> chunk -> (preprocessor pass -> narrow parts)
    -> editor pass -> parse patch -> snapshot targets -> write

Nothing in the working tree is touched until the response has been parsed
and every target of the run has been snapshotted for rollback.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field

from .cli_display import CLIDisplay
from .config import Config
from .editing.chunker import chunk_files, collect_files, format_chunks
from .editing.part_selector import (
    filter_chunks, normalize_selection, parse_part_selection,
)
from .editing.patch_applier import PatchApplier
from .editing.patch_parser import parse_patch
from .errors import ConfigError, PatchFormatError
from .llm.base import LLMClient
from .llm.prompts import build_editor_messages, build_preprocessor_messages
from .snapshots import RollbackManager

logger = logging.getLogger(__name__)

RAW_RESPONSE_FILENAME = "raw_response.log"
# Top-level files of the output directory that belong to a single run
_RUN_ARTIFACTS = ("response.txt", RAW_RESPONSE_FILENAME)


@dataclass
class RunResult:
    """Structured result returned by :func:`run_press`."""
    modified: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    free_text_path: str | None = None
    output_dir: str = ""
    elapsed: float = 0.0

    @property
    def saved_count(self) -> int:
        return len(self.modified) + len(self.created)


def prepare_output_dir(press_dir: str) -> str:
    """Create the output directory and clear the previous run's artifacts.

    Failure here is fatal to the run and happens before any mutation.
    """
    os.makedirs(press_dir, exist_ok=True)
    for name in _RUN_ARTIFACTS:
        path = os.path.join(press_dir, name)
        if os.path.isfile(path):
            os.remove(path)
    return press_dir


def select_parts(client: LLMClient, config: Config, chunks: list,
                 prompt: str, console_output: str = "") -> list:
    """Run the preprocessor pass and return the narrowed chunk set.

    Falls back to the full set when the selection is empty or cannot be
    decoded.
    """
    fmt = config.response_format
    system, user = build_preprocessor_messages(
        config.system_prompt, prompt, format_chunks(chunks, fmt), fmt,
        console_output)
    response = client.generate_response(system, user)
    try:
        selected = parse_part_selection(response, fmt)
    except PatchFormatError as exc:
        logger.warning("[Pipeline] Part selection unreadable, sending all parts: %s",
                       exc)
        return chunks

    selection = normalize_selection(selected.selection,
                                    [c.file_path for c in chunks])
    narrowed = filter_chunks(chunks, selection)
    if not narrowed:
        logger.warning("[Pipeline] Empty part selection, sending all parts")
        return chunks
    before = sum(c.part_count for c in chunks)
    after = sum(c.part_count for c in narrowed)
    logger.info("[Pipeline] Narrowed payload from %d to %d parts", before, after)
    return narrowed


def run_press(
    paths: list[str],
    prompt: str,
    config: Config,
    client: LLMClient,
    *,
    ignore: list[str] | None = None,
    auto: bool = False,
    console_output: str = "",
    display: CLIDisplay | None = None,
) -> RunResult:
    """Run one chunked patch pass over *paths*.

    Raises :class:`ConfigError` when there is nothing to process,
    :class:`PatchFormatError` when the response cannot be decoded at all
    (nothing is written), ``OSError`` when the output directory cannot be
    established, and :class:`LLMError` when the service keeps failing.
    """
    start = time.monotonic()
    if not prompt or not prompt.strip():
        raise ConfigError("Prompt is required")
    config.validate()
    fmt = config.response_format

    files = collect_files(paths, ignore or [])
    if not files:
        raise ConfigError("No files to process")
    if display:
        display.step(f"Processing {len(files)} file(s)")

    chunks, skipped = chunk_files(files, config.chunk_size, config.max_file_size)
    for path in skipped:
        if display:
            display.warning(f"Skipped (too large): {path}")
    if not chunks:
        raise ConfigError("No files to process")
    original_paths = [c.file_path for c in chunks]

    payload = chunks
    if config.preprocess:
        if display:
            display.start_spinner("Selecting parts to edit")
        try:
            payload = select_parts(client, config, chunks, prompt, console_output)
        finally:
            if display:
                display.stop_spinner()

    system, user = build_editor_messages(
        config.system_prompt, prompt, format_chunks(payload, fmt), fmt,
        console_output)
    if display:
        display.start_spinner("Waiting for edits")
    try:
        response = client.generate_response(system, user)
    finally:
        if display:
            display.stop_spinner()

    press_dir = prepare_output_dir(config.press_output_dir)
    with open(os.path.join(press_dir, RAW_RESPONSE_FILENAME), "w",
              encoding="utf-8") as f:
        f.write(response)

    patch = parse_patch(response, fmt)

    applier = PatchApplier(config.chunk_size, config.max_file_size)
    plan = applier.plan(patch, original_paths, press_dir, auto=auto)
    if plan.writes:
        RollbackManager(press_dir).save(new_files=plan.new_targets(),
                                        modified_files=plan.existing_targets())
    applied = applier.write(plan)
    free_text_path = applier.write_free_text(patch.free_text, press_dir)

    result = RunResult(
        modified=applied.modified,
        created=applied.created,
        unresolved=applied.unresolved,
        failed=applied.failed,
        skipped=skipped,
        free_text_path=free_text_path,
        output_dir=press_dir,
        elapsed=time.monotonic() - start,
    )
    logger.info("[Pipeline] Modified %d, created %d, unresolved %d, failed %d",
                len(result.modified), len(result.created),
                len(result.unresolved), len(result.failed))
    return result
