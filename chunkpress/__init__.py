"""
chunkpress — chunked patch runner.

Public API for library usage::

    from chunkpress import Config, run_press
    from chunkpress.llm import OpenAIClient

    cfg = Config.load()
    client = OpenAIClient(cfg.base_url, cfg.model, cfg.api_key)
    result = run_press(["src"], "Add type hints", cfg, client, auto=True)
    print(result.modified)
"""

from .config import Config
from .pipeline import run_press, RunResult
from .snapshots import RollbackManager, CheckpointManager

__all__ = ["Config", "run_press", "RunResult", "RollbackManager", "CheckpointManager"]
