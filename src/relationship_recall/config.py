from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from .logger import get_logger

log = get_logger(__name__)


class MatchWeights(BaseModel):
    exact_name: float = 1.0
    full_name: float = 0.9
    partial_name: float = 0.5
    nickname: float = 0.5
    organization: float = 0.3
    social_handle: float = 0.9
    context: float = 0.1


class IdentityResolutionConfig(BaseModel):
    high_threshold: float = 0.8
    low_threshold: float = 0.4
    ambiguity_margin: float = 0.1
    lock_timeout_seconds: float = 10.0
    weights: MatchWeights = Field(default_factory=MatchWeights)

    @model_validator(mode="after")
    def _check_thresholds(self) -> "IdentityResolutionConfig":
        if self.low_threshold > self.high_threshold:
            raise ValueError("low_threshold must not exceed high_threshold")
        if self.ambiguity_margin < 0:
            raise ValueError("ambiguity_margin must be non-negative")
        return self


class EmbeddingConfig(BaseModel):
    model_name: str = "all-MiniLM-L6-v2"
    timeout_seconds: float = 5.0
    dimension: Optional[int] = None
    max_workers: int = 4
    max_retry_attempts: int = 5


class SearchConfig(BaseModel):
    default_limit: int = 10
    overfetch_factor: int = 3
    cluster_threshold: float = 0.92
    min_similarity: float = 0.0
    similar_min_similarity: float = 0.6
    semantic_weight: float = 0.7
    keyword_weight: float = 0.3
    fusion_structured_weight: float = 0.6
    fusion_semantic_weight: float = 0.4


class CacheConfig(BaseModel):
    """Search result cache; Redis mirrors the in-process store when enabled."""
    redis_enabled: bool = False
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 1
    redis_password: Optional[str] = None
    ttl_seconds: int = 3600
    max_entries: int = 1000
    key_prefix: str = "search"


class AppConfig(BaseModel):
    database_path: str = "data/recall.db"
    identity_resolution: IdentityResolutionConfig = Field(default_factory=IdentityResolutionConfig)
    embeddings: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)


class Settings(BaseModel):
    app: AppConfig = Field(default_factory=AppConfig)


def _find_settings_path(explicit: Optional[str]) -> Optional[Path]:
    candidates = []
    if explicit:
        candidates.append(Path(explicit))
    env = os.getenv("RECALL_CONFIG")
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path("settings.yaml"),
        Path("settings.yml"),
        Path("config/settings.yaml"),
    ])
    for p in candidates:
        if p.exists() and p.is_file():
            return p
    return None


def _apply_env_overrides(s: Settings) -> Settings:
    if db_path := os.getenv("RECALL_DB_PATH"):
        s.app.database_path = db_path
    if model := os.getenv("RECALL_EMBED_MODEL"):
        s.app.embeddings.model_name = model
    return s


def load_settings(path: Optional[str] = None) -> Settings:
    p = _find_settings_path(path)
    if not p:
        log.warning("No settings file found; using defaults")
        return _apply_env_overrides(Settings())

    with open(p, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    try:
        s = Settings(**raw)
    except ValidationError as e:
        log.error("Settings validation failed: %s", e)
        raise
    return _apply_env_overrides(s)
