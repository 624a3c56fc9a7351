from __future__ import annotations

import re
from pathlib import Path
from typing import Generator

import numpy as np
import pytest

from relationship_recall.config import Settings, load_settings
from relationship_recall.db import init_db
from relationship_recall.service import RecallService

# Each vocabulary word is one axis; the trailing constant keeps vectors non-zero.
VOCAB = (
    "technology",
    "software",
    "engineer",
    "coffee",
    "hiking",
    "music",
    "investor",
    "startup",
)


def keyword_embed(text: str) -> np.ndarray:
    tokens = re.findall(r"[a-z]+", text.lower())
    return np.array([tokens.count(word) for word in VOCAB] + [0.1], dtype=np.float32)


def failing_embed(text: str) -> np.ndarray:
    raise RuntimeError("embedding service unreachable")


@pytest.fixture(scope="session")
def test_settings_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """Create an isolated settings.yaml for tests."""

    tmp_dir = tmp_path_factory.mktemp("settings")
    settings_path = tmp_dir / "settings.yaml"
    settings_yaml = f"""
app:
  database_path: "{tmp_dir / 'recall.db'}"
  identity_resolution:
    high_threshold: 0.8
    low_threshold: 0.4
    ambiguity_margin: 0.1
    lock_timeout_seconds: 10
  embeddings:
    model_name: "test-model"
    timeout_seconds: 2
    max_workers: 2
    max_retry_attempts: 3
  search:
    default_limit: 10
    overfetch_factor: 3
    cluster_threshold: 0.92
  cache:
    redis_enabled: false
    ttl_seconds: 3600
    max_entries: 100
"""
    settings_path.write_text(settings_yaml.strip(), encoding="utf-8")
    return settings_path


@pytest.fixture()
def settings(test_settings_path: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Load settings referencing a temporary database path."""

    db_path = tmp_path / "recall.db"
    monkeypatch.setenv("RECALL_DB_PATH", str(db_path))
    s = load_settings(str(test_settings_path))
    s.app.database_path = str(db_path)
    return s


@pytest.fixture()
def db_path(settings: Settings) -> str:
    init_db(settings.app.database_path)
    return settings.app.database_path


@pytest.fixture()
def service(settings: Settings) -> Generator[RecallService, None, None]:
    svc = RecallService(settings, embed_fn=keyword_embed)
    try:
        yield svc
    finally:
        svc.close()


@pytest.fixture()
def offline_service(settings: Settings) -> Generator[RecallService, None, None]:
    """Service whose embedding collaborator always fails."""

    svc = RecallService(settings, embed_fn=failing_embed)
    try:
        yield svc
    finally:
        svc.close()


@pytest.fixture()
def embed_fn():
    """The deterministic vocabulary-axis embed function."""

    return keyword_embed
