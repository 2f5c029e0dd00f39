"""
Configuration for seforim-acronymizer.
"""

import logging
import math
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Token-budget pacing and retry settings."""

    tpm_limit: int = 30_000
    est_tokens_per_request: int = 1_400
    base_delay_ms: int = 1_200
    max_retries: int = 8

    def min_delay_ms(self) -> int:
        """Minimum delay between calls so that calls/min * tokens <= TPM."""
        calls_per_minute = max(1.0, self.tpm_limit / self.est_tokens_per_request)
        return math.ceil(60_000 / calls_per_minute)


@dataclass
class LLMConfig:
    """LLM provider configuration."""

    model: str = "gpt-4.1"
    base_url: str = "https://api.openai.com/v1"
    api_key: str | None = None
    api_key_env: str | None = "OPEN_AI_KEY"
    timeout_seconds: float = 120.0
    temperature: float = 0.0

    def get_api_key(self) -> str | None:
        """Get API key from config or environment."""
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


@dataclass
class BatchConfig:
    """Batch processing cadence."""

    session_reset_every: int = 5
    session_reset_delay_seconds: float = 5.0
    item_delay_seconds: float = 0.0
    homogenize_every: int = 50
    progress_every: int = 50


@dataclass
class AcronymizerConfig:
    """Complete acronymizer configuration."""

    db_path: Path = field(default_factory=lambda: Path("acronymizer.db"))
    source_db_path: Path | None = None

    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AcronymizerConfig":
        """Create config from a dictionary (e.g., from YAML)."""
        config = cls()

        if "db_path" in data:
            config.db_path = Path(data["db_path"])
        if data.get("source_db_path"):
            config.source_db_path = Path(data["source_db_path"])

        if "rate_limit" in data:
            rl = data["rate_limit"]
            config.rate_limit = RateLimitConfig(
                tpm_limit=rl.get("tpm_limit", 30_000),
                est_tokens_per_request=rl.get("est_tokens_per_request", 1_400),
                base_delay_ms=rl.get("base_delay_ms", 1_200),
                max_retries=rl.get("max_retries", 8),
            )

        if "llm" in data:
            llm = data["llm"]
            config.llm = LLMConfig(
                model=llm.get("model", "gpt-4.1"),
                base_url=llm.get("base_url", "https://api.openai.com/v1"),
                api_key=llm.get("api_key"),
                api_key_env=llm.get("api_key_env", "OPEN_AI_KEY"),
                timeout_seconds=llm.get("timeout_seconds", 120.0),
                temperature=llm.get("temperature", 0.0),
            )

        if "batch" in data:
            batch = data["batch"]
            config.batch = BatchConfig(
                session_reset_every=batch.get("session_reset_every", 5),
                session_reset_delay_seconds=batch.get("session_reset_delay_seconds", 5.0),
                item_delay_seconds=batch.get("item_delay_seconds", 0.0),
                homogenize_every=batch.get("homogenize_every", 50),
                progress_every=batch.get("progress_every", 50),
            )

        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "AcronymizerConfig":
        """Load config from the ``acronymizer`` section of a YAML file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data.get("acronymizer", {}))

    def apply_env(self, environ: Mapping[str, str] | None = None) -> "AcronymizerConfig":
        """
        Override settings from environment variables.

        Unparseable numeric values are ignored and the current value kept.
        """
        env = os.environ if environ is None else environ

        self.rate_limit.tpm_limit = _env_int(
            env, "OPENAI_TPM_LIMIT", self.rate_limit.tpm_limit
        )
        self.rate_limit.est_tokens_per_request = _env_int(
            env, "OPENAI_EST_TOKENS_PER_REQ", self.rate_limit.est_tokens_per_request
        )
        self.rate_limit.base_delay_ms = _env_int(
            env, "OPENAI_BASE_DELAY_MS", self.rate_limit.base_delay_ms
        )

        if env.get("seforim_db"):
            self.source_db_path = Path(env["seforim_db"])
        if env.get("acronymizer_db"):
            self.db_path = Path(env["acronymizer_db"])

        return self

    def require_source_db(self) -> Path:
        """Return the source database path, or fail if none is configured."""
        if self.source_db_path is None:
            raise ConfigError("Environment variable seforim_db is not set")
        return self.source_db_path

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for JSON serialization (no secrets)."""
        return {
            "db_path": str(self.db_path),
            "source_db_path": str(self.source_db_path) if self.source_db_path else None,
            "rate_limit": {
                "tpm_limit": self.rate_limit.tpm_limit,
                "est_tokens_per_request": self.rate_limit.est_tokens_per_request,
                "base_delay_ms": self.rate_limit.base_delay_ms,
                "max_retries": self.rate_limit.max_retries,
            },
            "llm": {
                "model": self.llm.model,
                "base_url": self.llm.base_url,
            },
            "batch": {
                "session_reset_every": self.batch.session_reset_every,
                "homogenize_every": self.batch.homogenize_every,
                "item_delay_seconds": self.batch.item_delay_seconds,
            },
        }


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default
