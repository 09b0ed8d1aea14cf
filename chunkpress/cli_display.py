import logging
import os
import sys
import threading
import time as _time
from datetime import datetime


class TokenTracker:
    """Global tracker for token usage across all completion calls."""

    def __init__(self):
        self.total_prompt_tokens = 0
        self.total_completion_tokens = 0
        self.call_count = 0

    def record(self, prompt_tokens: int, completion_tokens: int):
        self.total_prompt_tokens += prompt_tokens
        self.total_completion_tokens += completion_tokens
        self.call_count += 1

    def reset(self):
        self.__init__()

    @property
    def total_tokens(self):
        return self.total_prompt_tokens + self.total_completion_tokens


# Global singleton
token_tracker = TokenTracker()

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logger(log_dir: str, level: str = "info") -> logging.Logger:
    """Attach a timestamped file handler to the ``chunkpress`` logger.

    ``level="off"`` leaves the logger without handlers (nothing is
    written).  Calling it again replaces the previous file handler.
    """
    logger = logging.getLogger("chunkpress")
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()

    if level.lower() == "off":
        logger.setLevel(logging.CRITICAL + 1)
        return logger

    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"press_{timestamp}.log")

    logger.setLevel(_LEVELS.get(level.lower(), logging.INFO))
    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"
    ))
    logger.addHandler(fh)
    return logger


class CLIDisplay:
    """Line-oriented terminal progress for a press run."""

    C_RESET = "\033[0m"
    C_BOLD = "\033[1m"
    C_DIM = "\033[2m"
    C_RED = "\033[31m"
    C_GREEN = "\033[32m"
    C_YELLOW = "\033[33m"
    C_CYAN = "\033[36m"

    ICONS = {
        "active": "◉",
        "done":   "✔",
        "failed": "✘",
        "skipped": "–",
    }

    # Spinner frames for waiting animation (ASCII-safe for Windows cp1252)
    _SPINNER_FRAMES = ["|", "/", "-", "\\"]

    def __init__(self, stream=None, color: bool | None = None):
        self.stream = stream or sys.stdout
        if color is None:
            color = hasattr(self.stream, "isatty") and self.stream.isatty()
        self.color = color
        self._spinner_thread: threading.Thread | None = None
        self._spinner_stop = threading.Event()
        self._spinner_message = ""
        self._lock = threading.Lock()

    def _c(self, code: str, text: str) -> str:
        return f"{code}{text}{self.C_RESET}" if self.color else text

    def _write(self, text: str = "") -> None:
        with self._lock:
            self.stream.write(text + "\n")
            self.stream.flush()

    # ── Sections ──

    def header(self) -> None:
        self._write(self._c(self.C_BOLD, "chunkpress") +
                    self._c(self.C_DIM, " ── chunked patch runner"))
        self._write()

    def step(self, message: str, status: str = "active") -> None:
        icon = self.ICONS.get(status, "?")
        colour = {
            "done": self.C_GREEN, "failed": self.C_RED,
            "skipped": self.C_DIM,
        }.get(status, self.C_CYAN)
        self._write(f"  {self._c(colour, icon)} {message}")

    def info(self, message: str) -> None:
        self._write(f"    {self._c(self.C_DIM, message)}")

    def warning(self, message: str) -> None:
        self._write(f"  {self._c(self.C_YELLOW, '[WARN]')} {message}")

    def error(self, message: str) -> None:
        self._write(f"  {self._c(self.C_RED, '[ERROR]')} {message}")

    def footer(self, saved_files: int, elapsed: float) -> None:
        t = token_tracker
        self._write()
        self._write(self._c(self.C_GREEN, f"  Saved {saved_files} file(s)") +
                    f" in {elapsed:.1f}s")
        if t.call_count:
            self._write(self._c(
                self.C_DIM,
                f"  Tokens: {t.total_tokens:,} "
                f"(input {t.total_prompt_tokens:,}, "
                f"output {t.total_completion_tokens:,})"))

    # ── Spinner animation ──

    def start_spinner(self, message: str = "Waiting for response") -> None:
        """Start a background spinner; no-op when not attached to a TTY."""
        self.stop_spinner()
        if not self.color:
            self.step(message)
            return
        self._spinner_stop.clear()
        self._spinner_message = message
        self._spinner_thread = threading.Thread(
            target=self._spinner_loop, daemon=True)
        self._spinner_thread.start()

    def stop_spinner(self) -> None:
        if self._spinner_thread and self._spinner_thread.is_alive():
            self._spinner_stop.set()
            self._spinner_thread.join(timeout=1.0)
            with self._lock:
                self.stream.write("\r\033[2K")
                self.stream.flush()
        self._spinner_thread = None

    def _spinner_loop(self) -> None:
        frame_idx = 0
        start_time = _time.monotonic()
        while not self._spinner_stop.is_set():
            elapsed = int(_time.monotonic() - start_time)
            frame = self._SPINNER_FRAMES[frame_idx % len(self._SPINNER_FRAMES)]
            try:
                with self._lock:
                    self.stream.write(
                        f"\r  {self._c(self.C_YELLOW, frame)} "
                        f"{self._c(self.C_CYAN, self._spinner_message)} "
                        f"{self._c(self.C_DIM, f'({elapsed}s)')}")
                    self.stream.flush()
            except (OSError, ValueError):
                break
            frame_idx += 1
            self._spinner_stop.wait(0.15)
