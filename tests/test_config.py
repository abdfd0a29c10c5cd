"""Tests for relaystream config loading."""

import pytest
import yaml

from relaystream import config as config_module
from relaystream.config import (
    API_KEY_ENV,
    DEFAULT_BASE_URL,
    ClientConfig,
    RetrySpec,
    StreamTimeoutSpec,
    load_config,
    parse_config,
)
from relaystream.errors import ConfigError


class TestDataclasses:
    def test_defaults(self):
        cfg = ClientConfig()
        assert cfg.base_url == DEFAULT_BASE_URL
        assert cfg.retry.max_attempts == 3
        assert cfg.structured.max_retries == 0
        assert not cfg.stream.to_timeouts().enabled

    def test_stream_spec_to_timeouts(self):
        t = StreamTimeoutSpec(ttft_ms=1, idle_ms=2, total_ms=3).to_timeouts()
        assert (t.ttft_ms, t.idle_ms, t.total_ms) == (1, 2, 3)


class TestParseConfig:
    def test_nested_sections(self, monkeypatch):
        monkeypatch.delenv(API_KEY_ENV, raising=False)
        cfg = parse_config({
            "base_url": "https://relay.example/api/v1",
            "api_key": "mr_sk_x",
            "default_model": "m",
            "retry": {"max_attempts": 5, "retry_post": False},
            "stream": {"idle_ms": 15000},
            "structured": {"max_retries": 2},
        })
        assert cfg.api_key == "mr_sk_x"
        assert cfg.retry == RetrySpec(max_attempts=5, retry_post=False)
        assert cfg.stream.idle_ms == 15000
        assert cfg.stream.total_ms == 0
        assert cfg.structured.max_retries == 2

    def test_unknown_keys_and_nulls_ignored(self, monkeypatch):
        monkeypatch.delenv(API_KEY_ENV, raising=False)
        cfg = parse_config({"bogus": 1, "base_url": None, "retry": "nope"})
        assert cfg.base_url == DEFAULT_BASE_URL
        assert cfg.retry == RetrySpec()

    def test_api_key_from_env(self, monkeypatch):
        monkeypatch.setenv(API_KEY_ENV, "mr_sk_env")
        assert parse_config({}).api_key == "mr_sk_env"
        assert parse_config({"api_key": "file"}).api_key == "file"
        assert parse_config({"access_token": "tok"}).api_key == ""

    def test_rejects_non_mapping(self):
        with pytest.raises(ConfigError):
            parse_config(["not", "a", "mapping"])


class TestLoadConfig:
    def test_defaults_when_explicit_file_missing(self, tmp_path):
        cfg = load_config(tmp_path / "does_not_exist.yaml")
        assert cfg.base_url == DEFAULT_BASE_URL

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "relaystream.yaml"
        path.write_text(yaml.dump({
            "base_url": "http://localhost:8080/api/v1",
            "stream": {"ttft_ms": 5000, "total_ms": 60000},
        }))
        cfg = load_config(path)
        assert cfg.base_url == "http://localhost:8080/api/v1"
        assert cfg.stream.ttft_ms == 5000
        assert cfg.stream.total_ms == 60000

    def test_empty_file(self, tmp_path):
        path = tmp_path / "relaystream.yaml"
        path.write_text("")
        assert load_config(path).base_url == DEFAULT_BASE_URL

    def test_search_paths(self, tmp_path, monkeypatch):
        found = tmp_path / "found.yaml"
        found.write_text(yaml.dump({"default_model": "from-search"}))
        monkeypatch.setattr(config_module, "_SEARCH_PATHS", [tmp_path / "missing.yaml", found])
        assert load_config().default_model == "from-search"

    def test_no_file_anywhere(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config_module, "_SEARCH_PATHS", [tmp_path / "missing.yaml"])
        assert load_config().default_model == ""
