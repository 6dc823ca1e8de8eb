"""Notification channels and the factory that builds them from config."""

from __future__ import annotations

import os

from ..config import ChannelsConfig
from ..core.errors import ConfigError
from .base import NotificationChannel, split_message
from .discord import DiscordChannel
from .file import FileChannel
from .telegram import TelegramChannel


def build_channels(cfg: ChannelsConfig) -> list[NotificationChannel]:
    """Instantiate every enabled channel.

    Raises:
        ConfigError: If an enabled channel is missing its secret env vars
    """
    channels: list[NotificationChannel] = []
    if cfg.telegram.enabled:
        token = _require_env(cfg.telegram.bot_token_env, "telegram")
        chat_id = _require_env(cfg.telegram.chat_id_env, "telegram")
        channels.append(
            TelegramChannel(
                token,
                chat_id,
                base_url=cfg.telegram.base_url,
                timeout_seconds=cfg.timeout_seconds,
            )
        )
    if cfg.discord.enabled:
        webhook = _require_env(cfg.discord.webhook_url_env, "discord")
        channels.append(DiscordChannel(webhook, timeout_seconds=cfg.timeout_seconds))
    if cfg.file.enabled:
        channels.append(FileChannel(cfg.file.directory))
    return channels


def _require_env(key: str, channel: str) -> str:
    value = os.getenv(key)
    if not value:
        raise ConfigError(f"{channel} channel is enabled but {key} is not set")
    return value


__all__ = [
    "DiscordChannel",
    "FileChannel",
    "NotificationChannel",
    "TelegramChannel",
    "build_channels",
    "split_message",
]
