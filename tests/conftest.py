import pytest

_ENV_KEYS = (
    "CHUNK_SIZE", "PRESS_RETRIES", "PRESS_RETRY_DELAY", "PRESS_OUTPUT_DIRECTORY",
    "PRESS_LOG_LEVEL", "PRESS_RESPONSE_FORMAT", "PRESS_TEMPERATURE",
    "PRESS_MAX_TOKENS", "PRESS_SYSTEM_PROMPT", "PRESS_MODEL", "PRESS_BASE_URL",
    "DEEPSEEK_API_KEY", "PRESS_PREPROCESS",
)


@pytest.fixture
def clean_env(tmp_path, monkeypatch):
    """Run in an empty working directory with no config file or env overrides."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    return work
