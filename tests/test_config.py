from __future__ import annotations

from pathlib import Path

import pydantic
import pytest

from relationship_recall.config import IdentityResolutionConfig, Settings, load_settings


def test_load_settings_from_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("RECALL_DB_PATH", raising=False)
    cfg = tmp_path / "settings.yaml"
    cfg.write_text(
        """
app:
  database_path: "var/recall.db"
  identity_resolution:
    high_threshold: 0.9
    weights:
      organization: 0.4
  search:
    overfetch_factor: 5
        """,
        encoding="utf-8",
    )
    s = load_settings(str(cfg))
    assert s.app.database_path.endswith("var/recall.db")
    assert s.app.identity_resolution.high_threshold == 0.9
    assert s.app.identity_resolution.weights.organization == 0.4
    assert s.app.identity_resolution.weights.partial_name == 0.5
    assert s.app.search.overfetch_factor == 5
    assert s.app.cache.redis_enabled is False


def test_defaults_without_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("RECALL_CONFIG", raising=False)
    monkeypatch.delenv("RECALL_DB_PATH", raising=False)
    monkeypatch.delenv("RECALL_EMBED_MODEL", raising=False)
    s = load_settings()
    assert s == Settings()
    assert s.app.identity_resolution.low_threshold == 0.4
    assert s.app.search.cluster_threshold == 0.92


def test_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("RECALL_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("RECALL_EMBED_MODEL", "custom-model")
    s = load_settings()
    assert s.app.database_path == str(tmp_path / "env.db")
    assert s.app.embeddings.model_name == "custom-model"


def test_config_env_points_at_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    cfg = tmp_path / "custom.yaml"
    cfg.write_text("app:\n  search:\n    default_limit: 3\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("RECALL_CONFIG", str(cfg))
    assert load_settings().app.search.default_limit == 3


def test_invalid_thresholds_rejected() -> None:
    with pytest.raises(pydantic.ValidationError):
        IdentityResolutionConfig(low_threshold=0.9, high_threshold=0.5)
    with pytest.raises(pydantic.ValidationError):
        IdentityResolutionConfig(ambiguity_margin=-0.1)


def test_invalid_file_raises(tmp_path: Path) -> None:
    cfg = tmp_path / "settings.yaml"
    cfg.write_text("app:\n  identity_resolution:\n    low_threshold: high\n", encoding="utf-8")
    with pytest.raises(pydantic.ValidationError):
        load_settings(str(cfg))
