import os

import pytest

# tipqa.config builds Settings at import time; keep a developer's .env values
# for the bot identity from leaking into tests.
os.environ.setdefault("OPENAI_API_KEY", "test-key-for-unit-tests")
os.environ.setdefault("BOT_ID", "0xbot")
os.environ.setdefault("BOT_APP_ADDRESS", "0xApp")


@pytest.fixture(autouse=True)
def settings_env(monkeypatch, tmp_path):
    """Set test environment variables."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path}/tipqa_test.db")
    monkeypatch.setenv("OPENAI_API_KEY", "test-key-for-unit-tests")
    monkeypatch.setenv("BOT_ID", "0xbot")
    monkeypatch.setenv("BOT_APP_ADDRESS", "0xApp")
    monkeypatch.setenv("EMBEDDING_CACHE_PATH", str(tmp_path / "embeddings.json"))
    yield
