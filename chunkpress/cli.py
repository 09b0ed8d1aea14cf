"""
CLI entry point — argument parsing and command dispatch.

    chunkpress -p src tests -m "rename foo to bar" [--auto] [-i src/vendor]
    chunkpress rollback
    chunkpress checkpoint -p src
    chunkpress checkpoint --revert
    chunkpress config --set-chunk-size 40
    chunkpress model-config --set-api-key KEY
"""

import argparse
import logging
import os
import sys

from .cli_display import CLIDisplay, setup_logger
from .config import Config
from .errors import ConfigError, PressError
from .llm.base import LLMError
from .llm.openai_client import OpenAIClient
from .pipeline import run_press
from .snapshots import CheckpointManager, RollbackManager

logger = logging.getLogger(__name__)

DEFAULT_PIPE_LINES = 10


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chunkpress",
        description="Send source files to a completion service in numbered "
                    "parts and apply the returned edits safely.")
    parser.add_argument("-p", "--paths", nargs="+", default=[],
                        help="Files or directories to process")
    parser.add_argument("-m", "--prompt", default=None,
                        help="Instructions for the model")
    parser.add_argument("-a", "--auto", action="store_true",
                        help="Overwrite the original files instead of "
                             "writing to the staging directory")
    parser.add_argument("-i", "--ignore", nargs="+", default=[],
                        help="Files or directories to ignore")
    parser.add_argument("--chunk-size", type=int, default=None,
                        help="Lines per part (default: from config; 0 = whole file)")
    parser.add_argument("--pipe-output", type=int, nargs="?",
                        const=DEFAULT_PIPE_LINES, default=None, metavar="N",
                        help="Append the last N lines of piped stdin to the "
                             f"prompt (default: {DEFAULT_PIPE_LINES})")
    parser.add_argument("--config", default=None,
                        help="Path to .chunkpress.yaml config file")

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("rollback", help="Undo the changes made by the last run")

    cp = sub.add_parser("checkpoint", help="Create or revert to a checkpoint")
    cp.add_argument("-p", "--paths", nargs="+", default=[], dest="checkpoint_paths",
                    help="Files or directories to checkpoint")
    cp.add_argument("--revert", action="store_true",
                    help="Restore the files saved by the last checkpoint")

    cfg = sub.add_parser("config", help="Update configuration options")
    cfg.add_argument("--set-chunk-size", type=int, default=None)
    cfg.add_argument("--set-log-level", default=None,
                     help="debug, info, warning, error or off")
    cfg.add_argument("--set-output-directory", default=None)
    cfg.add_argument("--set-retries", type=int, default=None)
    cfg.add_argument("--set-response-format", default=None, choices=["xml", "json"])

    model = sub.add_parser("model-config", help="Update model options")
    model.add_argument("--set-api-key", default=None)
    model.add_argument("--set-system-prompt", default=None)
    model.add_argument("--set-temperature", type=float, default=None)
    model.add_argument("--set-model", default=None)
    model.add_argument("--set-base-url", default=None)
    return parser


def read_piped_output(lines: int, stream=None) -> str:
    """Return the last *lines* lines of piped stdin, or ``""`` on a TTY."""
    stream = stream or sys.stdin
    if stream is None or stream.isatty():
        return ""
    captured = stream.read().splitlines()
    return "\n".join(captured[-lines:]) if lines > 0 else ""


def make_client(cfg: Config) -> OpenAIClient:
    if not cfg.api_key:
        raise ConfigError(
            "API key is required. Set DEEPSEEK_API_KEY or run "
            "'chunkpress model-config --set-api-key KEY'.")
    return OpenAIClient(
        base_url=cfg.base_url, model=cfg.model, api_key=cfg.api_key,
        temperature=cfg.temperature, max_tokens=cfg.max_tokens,
        json_mode=cfg.response_format == "json",
        max_retries=cfg.retries, retry_delay=cfg.retry_delay,
    )


# ── Commands ──

def _cmd_rollback(cfg: Config, display: CLIDisplay) -> int:
    report = RollbackManager(cfg.press_output_dir).rollback()
    for path in report.deleted:
        display.step(f"Deleted new file: {path}", "done")
    for path in report.restored:
        display.step(f"Restored: {path}", "done")
    return 0


def _cmd_checkpoint(args, cfg: Config, display: CLIDisplay) -> int:
    manager = CheckpointManager(cfg.press_output_dir)
    if args.revert:
        report = manager.revert()
        for path in report.restored:
            display.step(f"Restored: {path}", "done")
        display.info(f"Reverted {len(report.restored)} file(s) to checkpoint")
        return 0
    if not args.checkpoint_paths:
        raise ConfigError("checkpoint needs --paths or --revert")
    saved = manager.checkpoint(args.checkpoint_paths)
    display.step(f"Checkpoint saved ({len(saved)} file(s))", "done")
    return 0


def _cmd_config(args, cfg: Config, display: CLIDisplay) -> int:
    if args.command == "config":
        changed = cfg.update(
            chunk_size=args.set_chunk_size,
            log_level=args.set_log_level,
            output_directory=args.set_output_directory,
            retries=args.set_retries,
            response_format=args.set_response_format,
        )
    else:
        changed = cfg.update(
            api_key=args.set_api_key,
            system_prompt=args.set_system_prompt,
            temperature=args.set_temperature,
            model=args.set_model,
            base_url=args.set_base_url,
        )
    if not changed:
        display.info("Nothing to change")
        return 0
    cfg.validate()
    path = cfg.save()
    for key in changed:
        shown = "(set)" if key == "api_key" else getattr(cfg, key)
        display.step(f"{key} = {shown}", "done")
    display.info(f"Saved to {path}")
    return 0


def _cmd_run(args, cfg: Config, display: CLIDisplay) -> int:
    if not args.paths:
        raise ConfigError("No paths given (use -p/--paths)")
    if not args.prompt:
        raise ConfigError("Prompt is required (use -m/--prompt)")
    if args.chunk_size is not None:
        cfg.chunk_size = args.chunk_size
    cfg.validate()

    console_output = ""
    if args.pipe_output is not None:
        console_output = read_piped_output(args.pipe_output)

    setup_logger(os.path.join(cfg.press_output_dir, "logs"), cfg.log_level)
    display.header()
    result = run_press(
        args.paths, args.prompt, cfg, make_client(cfg),
        ignore=args.ignore, auto=args.auto,
        console_output=console_output, display=display,
    )

    for path in result.modified:
        display.step(f"Updated {path}", "done")
    for path in result.created:
        display.step(f"Created {path}", "done")
    for path in result.unresolved:
        display.step(f"No matching file for {path}", "skipped")
    for path, reason in result.failed.items():
        display.step(f"{path}: {reason}", "failed")
    if result.free_text_path:
        display.info(f"Model notes saved to {result.free_text_path}")
    if not args.auto and result.modified:
        display.info("Staged output written under "
                     f"{os.path.join(result.output_dir, 'code')}")
    display.footer(result.saved_count, result.elapsed)
    return 1 if result.failed else 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    display = CLIDisplay()

    try:
        cfg = Config.load(args.config)
        if args.command == "rollback":
            return _cmd_rollback(cfg, display)
        if args.command == "checkpoint":
            return _cmd_checkpoint(args, cfg, display)
        if args.command in ("config", "model-config"):
            return _cmd_config(args, cfg, display)
        return _cmd_run(args, cfg, display)
    except (PressError, LLMError) as e:
        display.stop_spinner()
        logger.error("%s", e)
        display.error(str(e))
        return 1
    except OSError as e:
        display.stop_spinner()
        logger.error("I/O error: %s", e)
        display.error(f"I/O error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
