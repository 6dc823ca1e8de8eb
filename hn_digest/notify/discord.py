"""Discord webhook channel."""

from __future__ import annotations

import httpx

from ..core.types import Digest
from .base import HttpChannel, plain_body, split_message, with_dedup_footer

DISCORD_MESSAGE_LIMIT = 2000


class DiscordChannel(HttpChannel):
    name = "discord"

    def __init__(
        self,
        webhook_url: str,
        timeout_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(timeout_seconds, client)
        self.webhook_url = webhook_url

    async def deliver(self, digest: Digest, body: str) -> None:
        text = with_dedup_footer(digest, plain_body(digest, body))
        for chunk in split_message(text, DISCORD_MESSAGE_LIMIT):
            await self._post_json(
                self.webhook_url,
                {"content": chunk, "allowed_mentions": {"parse": []}},
            )
