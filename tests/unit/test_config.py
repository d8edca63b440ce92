"""Unit tests for configuration management."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from mneme.config import (
    EmbeddingConfig,
    LLMConfig,
    MemoryConfig,
    MnemeConfig,
    VectorStoreConfig,
)


class TestLLMConfig:
    """Tests for LLMConfig."""

    def test_defaults(self) -> None:
        """Test default values."""
        config = LLMConfig(api_key="")
        assert config.model == "openai/gpt-4o-mini"
        assert config.base_url == "https://openrouter.ai/api/v1"
        assert config.temperature == 0.2
        assert config.max_tokens == 1024

    def test_api_key_falls_back_to_openrouter_env(self) -> None:
        """Test the OpenRouter key is used when none is given."""
        with patch.dict(os.environ, {"OPENROUTER_API_KEY": "or-key"}):
            assert LLMConfig().api_key == "or-key"
            assert EmbeddingConfig().api_key == "or-key"

    def test_temperature_validation_invalid(self) -> None:
        """Test temperature validation with invalid values."""
        with pytest.raises(ValueError, match="temperature must be between"):
            LLMConfig(temperature=-0.1)

        with pytest.raises(ValueError, match="temperature must be between"):
            LLMConfig(temperature=2.1)

    def test_max_tokens_validation_invalid(self) -> None:
        """Test max_tokens validation with invalid values."""
        with pytest.raises(ValueError, match="max_tokens must be positive"):
            LLMConfig(max_tokens=0)


class TestEmbeddingConfig:
    """Tests for EmbeddingConfig."""

    def test_defaults(self) -> None:
        """Test default values."""
        config = EmbeddingConfig(api_key="")
        assert config.model == "openai/text-embedding-3-small"
        assert config.is_configured is False

    def test_is_configured_with_key(self) -> None:
        assert EmbeddingConfig(api_key="sk-test").is_configured is True


class TestVectorStoreConfig:
    """Tests for VectorStoreConfig."""

    def test_defaults(self) -> None:
        config = VectorStoreConfig()
        assert config.enabled is True
        assert config.host == "http://localhost:8100"


class TestMemoryConfig:
    """Tests for MemoryConfig."""

    def test_defaults(self) -> None:
        """Test default values."""
        config = MemoryConfig()
        assert config.short_term_max_messages == 16
        assert config.short_term_keep_recent == 8
        assert config.duplicate_threshold == 0.1
        assert config.semantic_weight == 0.7
        assert config.keyword_weight == 0.3
        assert config.default_max_results == 5
        assert config.default_min_score == 0.3
        assert config.embedding_cache_max_entries is None

    def test_max_messages_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="value must be positive"):
            MemoryConfig(short_term_max_messages=0)

    @pytest.mark.parametrize("keep", [0, 16, 20])
    def test_keep_recent_must_be_below_cap(self, keep: int) -> None:
        """Test compaction must keep at least one message and drop at least one."""
        with pytest.raises(ValueError, match="short_term_keep_recent"):
            MemoryConfig(short_term_keep_recent=keep)

    def test_duplicate_threshold_range(self) -> None:
        """Test cosine distance threshold must lie in [0, 2]."""
        assert MemoryConfig(duplicate_threshold=2.0).duplicate_threshold == 2.0
        with pytest.raises(ValueError, match="duplicate_threshold must be between"):
            MemoryConfig(duplicate_threshold=-0.01)

    @pytest.mark.parametrize("field", ["semantic_weight", "keyword_weight", "default_min_score"])
    def test_unit_interval_fields(self, field: str) -> None:
        """Test weights and scores must be in [0, 1]."""
        with pytest.raises(ValueError, match="between 0.0 and 1.0"):
            MemoryConfig(**{field: 1.5})

    def test_cache_size_validation(self) -> None:
        assert MemoryConfig(embedding_cache_max_entries=0).embedding_cache_max_entries == 0
        with pytest.raises(ValueError, match="non-negative"):
            MemoryConfig(embedding_cache_max_entries=-1)


class TestMnemeConfig:
    """Tests for MnemeConfig."""

    def test_defaults(self) -> None:
        """Test default values."""
        config = MnemeConfig()
        assert config.name == "Mneme"
        assert config.version == "0.1.0"
        assert "~" not in config.data_dir
        assert config.log_level == "INFO"

    def test_store_path_defaults_into_data_dir(self, tmp_path: Path) -> None:
        """Test the SQLite store lives in data_dir unless configured."""
        config = MnemeConfig(data_dir=str(tmp_path / "data"))
        assert config.memory.store_path == str(tmp_path / "data" / "memory.db")

    def test_explicit_store_path_kept(self, tmp_path: Path) -> None:
        config = MnemeConfig(
            data_dir=str(tmp_path),
            memory=MemoryConfig(store_path=str(tmp_path / "elsewhere.db")),
        )
        assert config.memory.store_path == str(tmp_path / "elsewhere.db")

    def test_log_level_validation_case_insensitive(self) -> None:
        """Test log_level validation is case-insensitive."""
        assert MnemeConfig(log_level="debug").log_level == "DEBUG"

    def test_log_level_validation_invalid(self) -> None:
        """Test log_level validation with invalid values."""
        with pytest.raises(ValueError, match="log_level must be one of"):
            MnemeConfig(log_level="INVALID")

    def test_nested_env_override(self) -> None:
        """Test MNEME_ nested environment variables reach sub-sections."""
        with patch.dict(
            os.environ,
            {"MNEME_MEMORY__SHORT_TERM_MAX_MESSAGES": "20", "MNEME_VECTOR_STORE__HOST": "http://chroma:8000"},
        ):
            config = MnemeConfig()

        assert config.memory.short_term_max_messages == 20
        assert config.vector_store.host == "http://chroma:8000"

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        """Test loading config from YAML file."""
        yaml_content = f"""
mneme:
  name: "TestMneme"
  data_dir: "{tmp_path / 'data'}"
memory:
  short_term_max_messages: 20
  short_term_keep_recent: 10
llm:
  model: "test-model"
unrelated_section:
  anything: true
"""
        yaml_file = tmp_path / "config.yaml"
        yaml_file.write_text(yaml_content)

        config = MnemeConfig.load(yaml_path=yaml_file, env_file=None)

        assert config.name == "TestMneme"
        assert config.memory.short_term_max_messages == 20
        assert config.memory.short_term_keep_recent == 10
        assert config.llm.model == "test-model"
        assert config.memory.store_path == str(tmp_path / "data" / "memory.db")

    def test_load_malformed_yaml_uses_defaults(self, tmp_path: Path) -> None:
        """Test malformed YAML is ignored rather than fatal."""
        yaml_file = tmp_path / "config.yaml"
        yaml_file.write_text("mneme: [unclosed\n  name: x")

        config = MnemeConfig.load(yaml_path=yaml_file, env_file=None)

        assert config.name == "Mneme"

    def test_get_log_config(self) -> None:
        """Test get_log_config returns valid dict."""
        config = MnemeConfig(log_level="DEBUG")
        log_config = config.get_log_config()

        assert log_config["version"] == 1
        assert "formatters" in log_config
        assert log_config["handlers"]["console"]["level"] == "DEBUG"
        assert log_config["root"]["level"] == "DEBUG"
        assert log_config["loggers"]["httpx"]["level"] == "WARNING"
