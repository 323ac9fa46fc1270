"""Tests for the YAML/env configuration loader and model tables."""

from __future__ import annotations

from pathlib import Path

import pytest

from microcompact.config import DEFAULT_MODEL, CompactionConfig, ModelTables, load_config
from microcompact.exceptions import ConfigurationError

_ENV_VARS = (
    "MICROCOMPACT_MODEL",
    "MICROCOMPACT_THRESHOLD",
    "MICROCOMPACT_TARGET_RATIO",
    "MICROCOMPACT_MIN_MESSAGES",
    "MICROCOMPACT_PRESERVE_TOOL_CALLS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path / "absent.yaml")
        assert config.compaction == CompactionConfig()
        assert config.compaction.model == DEFAULT_MODEL
        assert config.tables.limit_for("claude-2.0") == 100_000

    def test_yaml_values(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "compaction:\n"
            "  threshold: 90000\n"
            "  target_ratio: 0.6\n"
            "  min_messages_to_compact: 12\n"
            "  preserve_tool_calls: false\n"
            "  model: claude-3-haiku-20240307\n"
            "  search_radius: 3\n",
        )
        comp = load_config(path).compaction
        assert comp.threshold == 90_000
        assert comp.target_ratio == 0.6
        assert comp.min_messages_to_compact == 12
        assert comp.preserve_tool_calls is False
        assert comp.model == "claude-3-haiku-20240307"
        assert comp.search_radius == 3

    def test_env_fallbacks(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MICROCOMPACT_THRESHOLD", "120000")
        monkeypatch.setenv("MICROCOMPACT_MODEL", "claude-3-opus-20240229")
        monkeypatch.setenv("MICROCOMPACT_PRESERVE_TOOL_CALLS", "no")
        comp = load_config(tmp_path / "absent.yaml").compaction
        assert comp.threshold == 120_000
        assert comp.model == "claude-3-opus-20240229"
        assert comp.preserve_tool_calls is False

    def test_yaml_wins_over_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MICROCOMPACT_THRESHOLD", "120000")
        path = _write(tmp_path, "compaction:\n  threshold: 50000\n")
        assert load_config(path).compaction.threshold == 50_000

    def test_model_tables_extended_from_yaml(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            "models:\n"
            "  house-model:\n"
            "    limit: 50000\n"
            "    pricing:\n"
            "      input: 1.0\n"
            "      output: 2.0\n",
        )
        tables = load_config(path).tables
        assert tables.limit_for("house-model") == 50_000
        pricing = tables.pricing_for("house-model")
        assert pricing is not None
        assert (pricing.input, pricing.output, pricing.cache_write, pricing.cache_read) == (1.0, 2.0, 0.0, 0.0)
        assert tables.pricing_for("claude-3-opus-20240229") is not None

    def test_invalid_threshold(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "compaction:\n  threshold: -5\n")
        with pytest.raises(ConfigurationError, match="threshold"):
            load_config(path)

    def test_unparseable_ratio(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "compaction:\n  target_ratio: half\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_incomplete_pricing(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "models:\n  broken:\n    pricing:\n      input: 1.0\n")
        with pytest.raises(ConfigurationError, match="broken"):
            load_config(path)

    @pytest.mark.parametrize("limit", [0, -1000])
    def test_non_positive_model_limit(self, tmp_path: Path, limit: int) -> None:
        path = _write(tmp_path, f"models:\n  my-model:\n    limit: {limit}\n")
        with pytest.raises(ConfigurationError, match="my-model"):
            load_config(path)

    def test_models_must_be_mapping(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "models:\n  - a\n  - b\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_configuration_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            CompactionConfig(threshold=-1)


class TestModelTables:
    def test_tables_are_read_only(self) -> None:
        tables = ModelTables(limits={"a": 1})
        with pytest.raises(TypeError):
            tables.limits["b"] = 2  # type: ignore[index]

    def test_source_dict_is_copied(self) -> None:
        source = {"a": 1}
        tables = ModelTables(limits=source)
        source["a"] = 999
        assert tables.limit_for("a") == 1

    def test_defaults_for_unknown_model(self) -> None:
        tables = ModelTables()
        assert tables.limit_for("nope") == 200_000
        assert tables.pricing_for("nope") is None

    def test_merged_overrides(self) -> None:
        tables = ModelTables().merged(limits={"claude-2.0": 120_000})
        assert tables.limit_for("claude-2.0") == 120_000
        assert tables.limit_for("claude-2.1") == 200_000

    def test_non_positive_model_limit(self) -> None:
        with pytest.raises(ConfigurationError, match="zero-model"):
            ModelTables(limits={"zero-model": 0})
        with pytest.raises(ConfigurationError):
            ModelTables().merged(limits={"claude-2.0": -1})

    def test_non_positive_default_limit(self) -> None:
        with pytest.raises(ConfigurationError):
            ModelTables(default_limit=0)
