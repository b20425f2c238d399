"""Tests for configuration models and TOML loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from resource_mirror.config import (
    CollectionConfig,
    LoggingConfig,
    load_config,
    resolve_env_vars,
)
from resource_mirror.errors import ConfigurationError

pytestmark = pytest.mark.unit


def _write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "mirror.toml"
    path.write_text(content)
    return path


class TestCollectionConfig:
    def test_required_fields(self) -> None:
        with pytest.raises(ValidationError):
            CollectionConfig(host="http://api")  # type: ignore[call-arg]

    def test_defaults(self) -> None:
        config = CollectionConfig(host="http://api", path="v1", type="articles")
        assert config.realtime is False
        assert config.inclusive is False
        assert config.verify_ssl is True
        assert config.request_timeout == 20.0
        assert config.receive_timeout == 5.0

    def test_slashes_and_whitespace_trimmed(self) -> None:
        config = CollectionConfig(host=" http://api/ ", path="/v1/", type="articles/")
        assert (config.host, config.path, config.type) == ("http://api", "v1", "articles")

    def test_blank_after_trim_rejected(self) -> None:
        with pytest.raises(ValidationError, match="non-empty"):
            CollectionConfig(host="http://api", path="//", type="articles")

    def test_extra_fields_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CollectionConfig(host="h", path="p", type="t", unknown="boom")

    def test_timeouts_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            CollectionConfig(host="h", path="p", type="t", request_timeout=0)


class TestResolveEnvVars:
    def test_nested_resolution(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MIRROR_HOST", "api.example.com")
        data = {"a": ["http://${MIRROR_HOST}", 3], "b": {"c": True}}
        assert resolve_env_vars(data) == {"a": ["http://api.example.com", 3], "b": {"c": True}}

    def test_missing_vars_reported_together(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NOPE_ONE", raising=False)
        monkeypatch.delenv("NOPE_TWO", raising=False)
        with pytest.raises(ConfigurationError, match="NOPE_ONE, NOPE_TWO"):
            resolve_env_vars("${NOPE_ONE}/${NOPE_TWO}")


class TestLoadConfig:
    def test_loads_collection_and_logging(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            '[collection]\nhost = "http://api"\npath = "v1"\ntype = "articles"\n'
            "realtime = true\n\n"
            '[logging]\nlevel = "DEBUG"\nformat = "json"\n',
        )
        config = load_config(path)
        assert config.collection.realtime is True
        assert config.collection.type == "articles"
        assert config.logging.level == "DEBUG"
        assert config.logging.format == "json"

    def test_logging_defaults(self, tmp_path: Path) -> None:
        path = _write(tmp_path, '[collection]\nhost = "h"\npath = "p"\ntype = "t"\n')
        assert load_config(path).logging == LoggingConfig()

    def test_env_var_substitution(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("API_HOST", "http://env-host")
        path = _write(tmp_path, '[collection]\nhost = "${API_HOST}"\npath = "p"\ntype = "t"\n')
        assert load_config(path).collection.host == "http://env-host"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "absent.toml")

    def test_invalid_toml(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="Invalid TOML"):
            load_config(_write(tmp_path, "[collection\n"))

    def test_missing_section(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match=r"\[collection\]"):
            load_config(_write(tmp_path, '[logging]\nlevel = "INFO"\n'))

    def test_validation_error_wrapped(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="Invalid config"):
            load_config(_write(tmp_path, '[collection]\nhost = "h"\n'))
