"""Telegram Bot API channel."""

from __future__ import annotations

import httpx

from ..core.types import Digest
from .base import HttpChannel, plain_body, split_message, with_dedup_footer

TELEGRAM_MESSAGE_LIMIT = 4096


class TelegramChannel(HttpChannel):
    """Sends the digest as one or more plain-text ``sendMessage`` calls.

    Messages are sent without a parse mode so digest text never has to be
    escaped for Telegram's markup dialects.
    """

    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        base_url: str = "https://api.telegram.org",
        timeout_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(timeout_seconds, client)
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.base_url = base_url.rstrip("/")

    async def deliver(self, digest: Digest, body: str) -> None:
        text = with_dedup_footer(digest, plain_body(digest, body))
        url = f"{self.base_url}/bot{self.bot_token}/sendMessage"
        for chunk in split_message(text, TELEGRAM_MESSAGE_LIMIT):
            await self._post_json(
                url,
                {
                    "chat_id": self.chat_id,
                    "text": chunk,
                    "disable_web_page_preview": True,
                },
            )
