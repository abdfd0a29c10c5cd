"""Configuration for relaystream clients.

Config discovery (first match wins):
  1. Explicit path (``--config`` flag)
  2. ``./relaystream.yaml``
  3. ``~/.config/relaystream/config.yaml``
  4. Built-in defaults

The API key may come from ``RELAYSTREAM_API_KEY`` when the file omits it.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from relaystream.errors import ConfigError
from relaystream.stream.watchdog import StreamTimeouts

_logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.modelrelay.ai/api/v1"
DEFAULT_CLIENT_HEADER = "relaystream-py/0.3"
API_KEY_ENV = "RELAYSTREAM_API_KEY"


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

@dataclass
class RetrySpec:
    """Connection-level retry policy applied by the HTTP transport."""

    max_attempts: int = 3
    base_backoff_ms: int = 300
    max_backoff_ms: int = 5000
    retry_post: bool = True


@dataclass
class StreamTimeoutSpec:
    """Default stream deadlines in milliseconds (0 disables)."""

    ttft_ms: int = 0
    idle_ms: int = 0
    total_ms: int = 0

    def to_timeouts(self) -> StreamTimeouts:
        return StreamTimeouts(
            ttft_ms=self.ttft_ms, idle_ms=self.idle_ms, total_ms=self.total_ms,
        )


@dataclass
class StructuredSpec:
    """Defaults for ``ResponsesClient.structured()``."""

    max_retries: int = 0
    schema_name: str = "response"


@dataclass
class ClientConfig:
    """Top-level config for relaystream."""

    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    access_token: str = ""
    client_header: str = DEFAULT_CLIENT_HEADER
    default_model: str = ""
    connect_timeout_ms: int = 5_000
    request_timeout_ms: int = 60_000
    headers: dict[str, str] = field(default_factory=dict)
    retry: RetrySpec = field(default_factory=RetrySpec)
    stream: StreamTimeoutSpec = field(default_factory=StreamTimeoutSpec)
    structured: StructuredSpec = field(default_factory=StructuredSpec)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./relaystream.yaml"),
    Path.home() / ".config" / "relaystream" / "config.yaml",
]


def _pick(cls: type, raw: Any) -> dict[str, Any]:
    """Keep only the keys of *raw* that are fields of dataclass *cls*."""
    if not isinstance(raw, dict):
        return {}
    return {
        k: v for k, v in raw.items()
        if v is not None and k in cls.__dataclass_fields__
    }


def parse_config(raw: dict[str, Any]) -> ClientConfig:
    """Build a ``ClientConfig`` from an already-parsed mapping."""
    if not isinstance(raw, dict):
        raise ConfigError(f"config must be a mapping, got {type(raw).__name__}")
    base = _pick(ClientConfig, raw)
    base["retry"] = RetrySpec(**_pick(RetrySpec, raw.get("retry")))
    base["stream"] = StreamTimeoutSpec(**_pick(StreamTimeoutSpec, raw.get("stream")))
    base["structured"] = StructuredSpec(**_pick(StructuredSpec, raw.get("structured")))
    cfg = ClientConfig(**base)
    if not cfg.api_key and not cfg.access_token:
        cfg.api_key = os.environ.get(API_KEY_ENV, "")
    return cfg


def load_config(path: str | Path | None = None) -> ClientConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Returns
    -------
    ClientConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return parse_config({})
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return parse_config({})

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    return parse_config(raw)
