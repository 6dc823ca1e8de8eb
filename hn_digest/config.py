"""
Configuration management using YAML files and dataclasses.

This module defines all configuration dataclasses and provides loading
from YAML files with defaults. Configuration sections:
- StorageConfig: Item store database and blob directory
- DiscoveryConfig: HackerNews top stories discovery
- StageConfig: Per-stage batch size and concurrency (extraction, summarization, notification)
- RetryConfig: Retry budget and backoff
- FetchConfig: HTTP fetching settings
- ExtractConfig: Content extraction settings
- SummaryConfig: LLM summarization settings
- ProviderConfig: LLM provider settings
- DigestConfig: Digest assembly and rendering
- ChannelsConfig: Notification channels
- SchedulerConfig: Trigger interval and tick budget
- LoggingConfig: Logging behavior
- LangfuseConfig: Langfuse tracing settings
- AppConfig: Root configuration container
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import os
from typing import Any

import yaml

from .core.errors import ConfigError


@dataclass
class StorageConfig:
    """Where pipeline state lives.

    Attributes:
        db_path: SQLite database file holding items and digests
        blob_dir: Directory for extracted text, summaries and rendered digests
    """

    db_path: str = "data/hn_digest.db"
    blob_dir: str = "data/blobs"


@dataclass
class DiscoveryConfig:
    """Configuration for top story discovery.

    Attributes:
        max_items_per_fetch: Maximum number of top stories read per tick
        base_url: HackerNews Firebase API base URL
        timeout_seconds: HTTP request timeout
        concurrency: Number of concurrent story detail requests
    """

    max_items_per_fetch: int = 30
    base_url: str = "https://hacker-news.firebaseio.com/v0"
    timeout_seconds: float = 10.0
    concurrency: int = 5


@dataclass
class StageConfig:
    """Batch size and concurrency for one pipeline stage."""

    batch_size: int = 10
    concurrency: int = 5


@dataclass
class RetryConfig:
    """Retry policy shared by all stages.

    Attributes:
        max_retry_attempts: Failed attempts after which an item (or channel) is terminal
        local_attempts: Attempts made within a single tick before deferring to the next tick
        backoff_base_seconds: First backoff delay; doubled on every retry
        backoff_max_seconds: Upper bound for a single backoff delay
    """

    max_retry_attempts: int = 5
    local_attempts: int = 3
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 8.0


@dataclass
class FetchConfig:
    """Configuration for HTTP content fetching.

    Attributes:
        timeout_seconds: HTTP request timeout
        trust_env: Whether to respect system proxy settings
        user_agent: HTTP User-Agent header string
        min_chars: Extracted text shorter than this is treated as a placeholder
    """

    timeout_seconds: float = 20.0
    trust_env: bool = True
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )
    min_chars: int = 200


@dataclass
class ExtractConfig:
    """Configuration for HTML content extraction.

    Attributes:
        primary: Primary extraction method ("trafilatura", "readability", or "bs4")
        fallback: List of fallback methods to try if primary fails
    """

    primary: str = "trafilatura"
    fallback: list[str] = field(default_factory=lambda: ["readability", "bs4"])


@dataclass
class SummaryConfig:
    """Configuration for LLM summarization.

    Attributes:
        max_tokens: Maximum output tokens for a summary
        max_chars: Maximum characters of article text to send to the LLM
    """

    max_tokens: int = 2048
    max_chars: int = 100000


@dataclass
class ProviderConfig:
    """Configuration for LLM provider.

    Attributes:
        name: Provider name ("gemini" currently supported)
        model: Model identifier
        api_key_env: Environment variable name containing the API key
        base_url: Base URL for the provider API
        api_key: Optional inline API key (overrides env var)
        trust_env: Whether to respect system proxy settings for API requests
        temperature: Sampling temperature
        timeout_seconds: Request timeout
    """

    name: str = "gemini"
    model: str = "gemini-2.0-flash"
    api_key_env: str = "GOOGLE_AI_API_KEY"
    base_url: str = "https://generativelanguage.googleapis.com"
    api_key: str | None = None
    trust_env: bool = True
    temperature: float = 0.2
    timeout_seconds: float = 60.0


@dataclass
class DigestConfig:
    """Configuration for digest assembly.

    Attributes:
        min_stories: Unattached summarized items needed before a digest is assembled
        max_stories: Maximum items in one digest (oldest first)
        grouping: Grouping strategy name ("topic", "site", "score", "date")
        format: Output format ("markdown", "html", "text")
        include_links: Whether to include article and discussion links
        title: Digest heading
    """

    min_stories: int = 5
    max_stories: int = 30
    grouping: str = "topic"
    format: str = "markdown"
    include_links: bool = True
    title: str = "HackerNews Digest"


@dataclass
class TelegramConfig:
    enabled: bool = False
    bot_token_env: str = "TELEGRAM_BOT_TOKEN"
    chat_id_env: str = "TELEGRAM_CHAT_ID"
    base_url: str = "https://api.telegram.org"


@dataclass
class DiscordConfig:
    enabled: bool = False
    webhook_url_env: str = "DISCORD_WEBHOOK_URL"


@dataclass
class FileChannelConfig:
    enabled: bool = True
    directory: str = "out/digests"


@dataclass
class ChannelsConfig:
    """Notification channel settings. Secrets are read from the named env vars.

    Attributes:
        timeout_seconds: HTTP timeout for channel APIs
        delivery_lease_seconds: How long a tick owns a pending delivery before
            another tick may retry it
    """

    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    file: FileChannelConfig = field(default_factory=FileChannelConfig)
    timeout_seconds: float = 15.0
    delivery_lease_seconds: float = 600.0


@dataclass
class SchedulerConfig:
    """Configuration for the time trigger.

    Attributes:
        interval_seconds: Seconds between ticks
        tick_budget_seconds: No new stage batch starts once a tick has run this long
    """

    interval_seconds: float = 300.0
    tick_budget_seconds: float | None = 240.0


@dataclass
class LoggingConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level ("DEBUG", "INFO", "WARNING", "ERROR")
        console: Whether to log to console
        file: Whether to log to file
        format: Log file format ("jsonl" or "plain")
        directory: Directory for the log file
        filename: Name of the main log file
    """

    level: str = "INFO"
    console: bool = True
    file: bool = True
    format: str = "jsonl"
    directory: str = "logs"
    filename: str = "pipeline.jsonl"


@dataclass
class LangfuseConfig:
    """Configuration for Langfuse tracing.

    Attributes:
        enabled: Whether to enable Langfuse tracing
        public_key: Langfuse public key (optional)
        secret_key: Langfuse secret key (optional)
        host: Langfuse host URL (optional)
        environment: Langfuse environment label (optional)
        release: Langfuse release identifier (optional)
        redaction: Redaction mode for prompt/response payloads
        max_text_chars: Maximum characters for prompt/response payloads
    """

    enabled: bool = False
    public_key: str | None = None
    secret_key: str | None = None
    host: str | None = None
    environment: str | None = None
    release: str | None = None
    redaction: str = "redact_urls_authors"
    max_text_chars: int = 20000


@dataclass
class AppConfig:
    """Root configuration container aggregating all config sections."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    extraction: StageConfig = field(default_factory=lambda: StageConfig(batch_size=10, concurrency=5))
    summarization: StageConfig = field(default_factory=lambda: StageConfig(batch_size=5, concurrency=3))
    notification: StageConfig = field(default_factory=lambda: StageConfig(batch_size=5, concurrency=3))
    retry: RetryConfig = field(default_factory=RetryConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    extract: ExtractConfig = field(default_factory=ExtractConfig)
    summary: SummaryConfig = field(default_factory=SummaryConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    digest: DigestConfig = field(default_factory=DigestConfig)
    channels: ChannelsConfig = field(default_factory=ChannelsConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    langfuse: LangfuseConfig = field(default_factory=LangfuseConfig)


_GROUPINGS = {"topic", "site", "score", "date"}
_FORMATS = {"markdown", "html", "text"}


def load_config(path: str | None) -> AppConfig:
    """Load configuration from a YAML file with defaults, then validate it."""
    if not path:
        cfg = AppConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Cannot read config {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"Config {path} must be a mapping")
        cfg = _merge_config(AppConfig(), raw)
    validate_config(cfg)
    return cfg


def _merge_config(base: AppConfig, raw: dict[str, Any]) -> AppConfig:
    """Merge raw YAML config into base AppConfig."""
    data = asdict(base)
    _deep_update(data, raw)
    return _fromdict(data)


def _deep_update(target: dict[str, Any], raw: dict[str, Any]) -> None:
    for key, value in raw.items():
        if key not in target:
            continue
        if isinstance(value, dict) and isinstance(target[key], dict):
            _deep_update(target[key], value)
        else:
            target[key] = value


def _fromdict(data: dict[str, Any]) -> AppConfig:
    """Reconstruct AppConfig from nested dictionary."""
    channels = dict(data["channels"])
    try:
        return AppConfig(
            storage=StorageConfig(**data["storage"]),
            discovery=DiscoveryConfig(**data["discovery"]),
            extraction=StageConfig(**data["extraction"]),
            summarization=StageConfig(**data["summarization"]),
            notification=StageConfig(**data["notification"]),
            retry=RetryConfig(**data["retry"]),
            fetch=FetchConfig(**data["fetch"]),
            extract=ExtractConfig(**data["extract"]),
            summary=SummaryConfig(**data["summary"]),
            provider=ProviderConfig(**data["provider"]),
            digest=DigestConfig(**data["digest"]),
            channels=ChannelsConfig(
                telegram=TelegramConfig(**channels.pop("telegram")),
                discord=DiscordConfig(**channels.pop("discord")),
                file=FileChannelConfig(**channels.pop("file")),
                **channels,
            ),
            scheduler=SchedulerConfig(**data["scheduler"]),
            logging=LoggingConfig(**data["logging"]),
            langfuse=LangfuseConfig(**data["langfuse"]),
        )
    except TypeError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


def validate_config(cfg: AppConfig) -> None:
    """Reject configurations the pipeline cannot run with.

    Raises:
        ConfigError: On the first invalid value found
    """
    for name in ("extraction", "summarization", "notification"):
        stage: StageConfig = getattr(cfg, name)
        if stage.batch_size < 1 or stage.concurrency < 1:
            raise ConfigError(f"{name}: batch_size and concurrency must be positive")
    if cfg.discovery.max_items_per_fetch < 0 or cfg.discovery.concurrency < 1:
        raise ConfigError("discovery: max_items_per_fetch must be >= 0 and concurrency positive")
    if cfg.retry.max_retry_attempts < 1 or cfg.retry.local_attempts < 1:
        raise ConfigError("retry: max_retry_attempts and local_attempts must be positive")
    if cfg.retry.backoff_base_seconds < 0 or cfg.retry.backoff_max_seconds < 0:
        raise ConfigError("retry: backoff delays cannot be negative")
    if cfg.digest.min_stories < 1 or cfg.digest.max_stories < cfg.digest.min_stories:
        raise ConfigError("digest: require 1 <= min_stories <= max_stories")
    if cfg.digest.grouping not in _GROUPINGS:
        raise ConfigError(f"digest: unknown grouping {cfg.digest.grouping!r}")
    if cfg.digest.format not in _FORMATS:
        raise ConfigError(f"digest: unknown format {cfg.digest.format!r}")
    if cfg.summary.max_tokens < 1:
        raise ConfigError("summary: max_tokens must be positive")
    if cfg.scheduler.interval_seconds <= 0:
        raise ConfigError("scheduler: interval_seconds must be positive")


def get_api_key(cfg: ProviderConfig) -> str | None:
    """Get API key from inline config or environment variable."""
    if cfg.api_key:
        return cfg.api_key
    return os.getenv(cfg.api_key_env)
