"""ledgerpipe configuration management.

Loads configuration from environment variables with sensible defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


@dataclass
class DBConfig:
    """Database connection configuration."""

    url: str
    pool_size: int = 10
    pool_max_overflow: int = 20
    pool_timeout: int = 30
    echo: bool = False  # SQL logging


@dataclass
class PipelineConfig:
    """Import limits and enrichment pipeline tuning."""

    snapshot_sample_size: int = 100
    max_payload_bytes: int = 10 * 1024 * 1024
    max_rows: int = 50_000
    tag_rules_path: Path | None = None  # None = packaged default rules
    fallback_tag: str = "Other"

    # Transfer matching
    match_window_days: int = 3

    # Recurring charge detection
    detector_similarity: int = 85
    detector_min_occurrences: int = 3
    zombie_min_charges: int = 6


@dataclass
class ModelConfig:
    """Ollama-compatible model server used by the model-backed collaborators."""

    enabled: bool = False
    base_url: str = "http://localhost:11434"
    model: str = "llama3.2"
    timeout_seconds: float = 30.0


@dataclass
class AppConfig:
    """Root application configuration.

    Loads from environment variables with fail-fast on missing required values.
    """

    db: DBConfig
    log_level: str = "INFO"
    json_logs: bool = False

    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    model: ModelConfig = field(default_factory=ModelConfig)

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables.

        Required environment variables:
        - DATABASE_URL: SQLAlchemy async connection string

        Optional (with defaults):
        - LOG_LEVEL: Logging verbosity (default: "INFO")
        - JSON_LOGS: "true" renders JSON log lines instead of console output
        - OLLAMA_HOST / OLLAMA_MODEL: enable the model-backed collaborators

        Raises:
            KeyError: If required environment variables are missing
        """
        database_url = os.environ.get("DATABASE_URL")
        if not database_url:
            raise KeyError(
                "DATABASE_URL environment variable is required. "
                "Example: sqlite+aiosqlite:///./ledgerpipe.db"
            )

        tag_rules = os.getenv("TAG_RULES_PATH")

        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            json_logs=os.getenv("JSON_LOGS", "false").lower() == "true",
            db=DBConfig(
                url=database_url,
                pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
                pool_max_overflow=int(os.getenv("DB_POOL_MAX_OVERFLOW", "20")),
                pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
                echo=os.getenv("DB_ECHO", "false").lower() == "true",
            ),
            pipeline=PipelineConfig(
                snapshot_sample_size=int(os.getenv("SNAPSHOT_SAMPLE_SIZE", "100")),
                max_payload_bytes=int(
                    os.getenv("MAX_PAYLOAD_BYTES", str(10 * 1024 * 1024))
                ),
                max_rows=int(os.getenv("MAX_IMPORT_ROWS", "50000")),
                tag_rules_path=Path(tag_rules) if tag_rules else None,
                fallback_tag=os.getenv("FALLBACK_TAG", "Other"),
                match_window_days=int(os.getenv("MATCH_WINDOW_DAYS", "3")),
                detector_similarity=int(os.getenv("DETECTOR_SIMILARITY", "85")),
                detector_min_occurrences=int(
                    os.getenv("DETECTOR_MIN_OCCURRENCES", "3")
                ),
                zombie_min_charges=int(os.getenv("ZOMBIE_MIN_CHARGES", "6")),
            ),
            model=ModelConfig(
                enabled=os.getenv("OLLAMA_HOST") is not None,
                base_url=os.getenv("OLLAMA_HOST", "http://localhost:11434"),
                model=os.getenv("OLLAMA_MODEL", "llama3.2"),
                timeout_seconds=float(os.getenv("OLLAMA_TIMEOUT", "30")),
            ),
        )

    @property
    def tag_rules_file(self) -> Path:
        """Path to the tag rules YAML (packaged default unless overridden)."""
        if self.pipeline.tag_rules_path is not None:
            return self.pipeline.tag_rules_path
        return Path(__file__).parent / "enrichment" / "tag_rules.yaml"


# Singleton instance (lazy-loaded)
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or create singleton AppConfig instance from environment.

    Returns:
        AppConfig: Application configuration

    Raises:
        KeyError: If required environment variables are missing
    """
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next call re-reads the environment."""
    global _config
    _config = None
