"""Mneme configuration management.

Loads configuration from .env files and YAML config files, merges them,
and provides validated settings via pydantic models.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def _openrouter_key() -> str:
    return os.environ.get("OPENROUTER_API_KEY", "")


class LLMConfig(BaseModel):
    """Configuration for the language model used for summaries and fact extraction."""

    model: str = "openai/gpt-4o-mini"
    base_url: str = OPENROUTER_BASE_URL
    api_key: str = Field(default_factory=_openrouter_key)
    temperature: float = 0.2
    max_tokens: int = 1024
    timeout: float = 60.0

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """Ensure temperature is in valid range."""
        if not 0.0 <= v <= 2.0:
            raise ValueError("temperature must be between 0.0 and 2.0")
        return v

    @field_validator("max_tokens")
    @classmethod
    def validate_max_tokens(cls, v: int) -> int:
        """Ensure max_tokens is positive."""
        if v <= 0:
            raise ValueError("max_tokens must be positive")
        return v


class EmbeddingConfig(BaseModel):
    """Configuration for the embedding provider."""

    model: str = "openai/text-embedding-3-small"
    base_url: str = OPENROUTER_BASE_URL
    api_key: str = Field(default_factory=_openrouter_key)
    timeout: float = 30.0

    @property
    def is_configured(self) -> bool:
        """True when an API key is available."""
        return bool(self.api_key)


class VectorStoreConfig(BaseModel):
    """Configuration for the Chroma vector store backing long-term memory."""

    enabled: bool = True
    host: str = "http://localhost:8100"


class MemoryConfig(BaseModel):
    """Configuration for the memory subsystem."""

    short_term_max_messages: int = 16
    short_term_keep_recent: int = 8
    duplicate_threshold: float = 0.1
    semantic_weight: float = 0.7
    keyword_weight: float = 0.3
    default_max_results: int = 5
    default_min_score: float = 0.3
    embedding_cache_max_entries: int | None = None
    store_path: str = ""

    @field_validator("short_term_max_messages", "default_max_results")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Ensure counts are positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("duplicate_threshold")
    @classmethod
    def validate_duplicate_threshold(cls, v: float) -> float:
        """Cosine distance lives in [0, 2]."""
        if not 0.0 <= v <= 2.0:
            raise ValueError("duplicate_threshold must be between 0.0 and 2.0")
        return v

    @field_validator("semantic_weight", "keyword_weight", "default_min_score")
    @classmethod
    def validate_unit_interval(cls, v: float) -> float:
        """Ensure weights and scores are in [0, 1]."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("value must be between 0.0 and 1.0")
        return v

    @field_validator("embedding_cache_max_entries")
    @classmethod
    def validate_cache_size(cls, v: int | None) -> int | None:
        """None means unbounded; otherwise the bound must be non-negative."""
        if v is not None and v < 0:
            raise ValueError("embedding_cache_max_entries must be non-negative")
        return v

    @model_validator(mode="after")
    def validate_keep_recent(self) -> "MemoryConfig":
        """Compaction must keep at least one message and drop at least one."""
        if not 1 <= self.short_term_keep_recent < self.short_term_max_messages:
            raise ValueError(
                "short_term_keep_recent must be at least 1 and less than short_term_max_messages"
            )
        return self


class MnemeConfig(BaseSettings):
    """
    Mneme's main configuration.

    Loads from:
    1. .env file (via pydantic-settings)
    2. YAML config files (via load() classmethod)
    3. Environment variables with MNEME_ prefix
    """

    model_config = SettingsConfigDict(
        env_prefix="MNEME_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    data_dir: str = "~/.mneme/data"
    log_level: str = "INFO"
    name: str = "Mneme"
    version: str = "0.1.0"

    llm: LLMConfig = Field(default_factory=LLMConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log_level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def expand_paths(self) -> "MnemeConfig":
        """Expand user home directory and default the store path into data_dir."""
        self.data_dir = str(Path(self.data_dir).expanduser())
        if not self.memory.store_path:
            self.memory.store_path = str(Path(self.data_dir) / "memory.db")
        else:
            self.memory.store_path = str(Path(self.memory.store_path).expanduser())
        return self

    @classmethod
    def load(
        cls,
        yaml_path: Path | str | None = None,
        env_file: str | None = ".env",
    ) -> "MnemeConfig":
        """
        Load configuration from YAML and environment.

        Args:
            yaml_path: Path to YAML config file. If None, searches default locations.
            env_file: Path to .env file.

        Returns:
            Validated MnemeConfig instance.
        """
        yaml_file = cls._find_yaml_config(yaml_path)

        yaml_data: dict[str, Any] = {}
        if yaml_file and yaml_file.exists():
            yaml_data = cls._load_yaml_file(yaml_file)
            logger.debug(f"Loaded config from {yaml_file}")

        # A top-level 'mneme' section holds the core settings; other
        # top-level keys are the nested sections (llm, memory, ...).
        if "mneme" in yaml_data:
            merged_data = dict(yaml_data["mneme"] or {})
            merged_data.update({k: v for k, v in yaml_data.items() if k != "mneme"})
            yaml_data = merged_data

        yaml_data = cls._drop_unknown_sections(yaml_data)

        if env_file and Path(env_file).exists():
            return cls(_env_file=env_file, **yaml_data)
        return cls(**yaml_data)

    @classmethod
    def _find_yaml_config(cls, yaml_path: Path | str | None) -> Path | None:
        """Find the YAML config file to load."""
        if yaml_path:
            return Path(yaml_path)

        default_locations = [
            Path("config/default.yaml"),
            Path("config/default.yml"),
            Path.home() / ".mneme" / "config.yaml",
            Path("/etc/mneme/config.yaml"),
        ]

        for location in default_locations:
            if location.exists():
                return location

        return None

    @classmethod
    def _load_yaml_file(cls, path: Path) -> dict[str, Any]:
        """Load YAML file and return parsed data."""
        try:
            with path.open("r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.warning(f"Failed to parse YAML file {path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring YAML file {path}: top level is not a mapping")
            return {}
        return data

    @classmethod
    def _drop_unknown_sections(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Keep only keys that map to fields, so stray YAML sections don't fail validation."""
        known = set(cls.model_fields)
        unknown = sorted(k for k in data if k not in known)
        if unknown:
            logger.debug(f"Ignoring unknown config keys: {unknown}")
        return {k: v for k, v in data.items() if k in known}

    def get_log_config(self) -> dict[str, Any]:
        """Get logging configuration dict for use with logging.config."""
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "level": self.log_level,
                    "formatter": "standard",
                },
            },
            "root": {
                "level": self.log_level,
                "handlers": ["console"],
            },
            "loggers": {
                "httpx": {"level": "WARNING"},
                "chromadb": {"level": "WARNING"},
            },
        }
