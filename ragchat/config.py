"""
Service configuration
----------------------
Settings are read from a YAML file (config/config.yaml by default) and
validated into nested Pydantic models.  Secrets never need to live in the
YAML: API keys and the active provider are taken from the environment
(optionally via a .env file) and override whatever the file says.

Environment variables:
    RAGCHAT_CONFIG     path of the YAML file
    LLM_PROVIDER       openai | gemini | claude | mistral | mock
    OPENAI_API_KEY, GEMINI_API_KEY, CLAUDE_API_KEY, MISTRAL_API_KEY
    LOG_LEVEL          loguru level for both sinks
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

from ragchat.errors import ConfigurationError

DEFAULT_CONFIG_PATH = "config/config.yaml"

ProviderName = Literal["openai", "gemini", "claude", "mistral", "mock"]

_PROVIDER_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "claude": "CLAUDE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
}

_DEFAULT_MODELS = {
    "openai": "gpt-3.5-turbo",
    "gemini": "gemini-1.0-pro",
    "claude": "claude-3-haiku-20240307",
    "mistral": "mistral-tiny",
    "mock": "mock-model",
}


class ChunkingSettings(BaseModel):
    chunk_size: int = Field(default=300, ge=1)
    chunk_overlap: int = Field(default=50, ge=0)

    @model_validator(mode="after")
    def _stride_positive(self) -> "ChunkingSettings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than "
                f"chunk_size ({self.chunk_size})"
            )
        return self


class EmbeddingSettings(BaseModel):
    kind: Literal["random", "hash"] = "hash"
    dimensions: int = Field(default=1536, ge=1)
    seed: Optional[int] = None


class RetrievalSettings(BaseModel):
    similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    max_retrieved_chunks: int = Field(default=3, ge=1, le=10)
    backend: Literal["numpy", "faiss"] = "numpy"


class LLMSettings(BaseModel):
    provider: ProviderName = "gemini"
    api_keys: dict[str, str] = Field(default_factory=dict)
    models: dict[str, str] = Field(default_factory=lambda: dict(_DEFAULT_MODELS))
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int = Field(default=500, ge=1)
    timeout_ms: int = Field(default=30_000, ge=1)
    max_retries: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=1_000, ge=0)
    mock_delay_ms: int = Field(default=500, ge=0)

    @model_validator(mode="after")
    def _fill_models(self) -> "LLMSettings":
        for name, model in _DEFAULT_MODELS.items():
            self.models.setdefault(name, model)
        return self


class ConversationSettings(BaseModel):
    max_history_length: int = Field(default=6, ge=1)
    session_timeout_seconds: float = Field(default=3600.0, gt=0)
    cleanup_interval_seconds: float = Field(default=300.0, gt=0)


class StorageSettings(BaseModel):
    corpus_file: str = "data/docs.json"
    index_file: str = "data/vectorStore.json"
    sessions_file: str = "data/conversations.json"


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: Optional[str] = "logs/ragchat.log"


class Settings(BaseModel):
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    conversation: ConversationSettings = Field(default_factory=ConversationSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# --- Loading ------------------------------------------------------------------

def _load_yaml(path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def _apply_env(raw: dict) -> dict:
    llm = raw.setdefault("llm", {})
    if provider := os.getenv("LLM_PROVIDER"):
        llm["provider"] = provider.strip().lower()

    keys = llm.setdefault("api_keys", {})
    for name, env_var in _PROVIDER_KEY_ENV.items():
        if value := os.getenv(env_var):
            keys[name] = value

    if level := os.getenv("LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = level.upper()
    return raw


def load_settings(path: str | Path | None = None, use_env: bool = True) -> Settings:
    """
    Build Settings from YAML + environment.

    A missing file is not an error: defaults apply.  Invalid values raise
    ConfigurationError so callers only handle one exception type.
    """
    if use_env:
        load_dotenv()
    config_path = Path(path or os.getenv("RAGCHAT_CONFIG") or DEFAULT_CONFIG_PATH)

    raw: dict = _load_yaml(config_path) if config_path.exists() else {}
    if use_env:
        raw = _apply_env(raw)

    try:
        return Settings.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {exc}") from exc
