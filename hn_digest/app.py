"""Wiring of stores, capabilities and the orchestrator from configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .config import AppConfig
from .digest.assembler import DigestAssembler
from .fetch.extractor import ContentExtractor
from .llm.providers.factory import create_provider
from .notify import build_channels
from .pipeline.batch import BatchRunner
from .pipeline.orchestrator import Orchestrator
from .sources.hackernews import HackerNewsSource
from .storage.blob_store import BlobStore
from .storage.item_store import ItemStore


def open_store(cfg: AppConfig) -> ItemStore:
    return ItemStore(cfg.storage.db_path, max_retry_attempts=cfg.retry.max_retry_attempts)


@dataclass
class Pipeline:
    """A fully wired orchestrator plus the resources it holds open."""

    store: ItemStore
    blobs: BlobStore
    orchestrator: Orchestrator
    resources: list[Any] = field(default_factory=list)

    async def aclose(self) -> None:
        for resource in self.resources:
            await resource.aclose()
        self.store.close()


def build_pipeline(cfg: AppConfig) -> Pipeline:
    """Build every component from ``cfg``.

    Raises:
        ConfigError: Unknown provider, missing API key or missing channel secrets
        StoreUnavailable: The database cannot be opened
    """
    channels = build_channels(cfg.channels)
    summarizer = create_provider(cfg.provider, cfg.summary)
    store = open_store(cfg)
    blobs = BlobStore(cfg.storage.blob_dir)
    runner = BatchRunner(cfg.retry)
    source = HackerNewsSource(cfg.discovery, runner)
    extractor = ContentExtractor(cfg.fetch, cfg.extract)
    assembler = DigestAssembler(
        store,
        blobs,
        channels,
        cfg.digest,
        cfg.notification,
        cfg.retry,
        runner,
        lease_seconds=cfg.channels.delivery_lease_seconds,
    )
    orchestrator = Orchestrator(
        store,
        blobs,
        source,
        extractor,
        summarizer,
        assembler,
        cfg,
        runner=runner,
    )
    return Pipeline(
        store=store,
        blobs=blobs,
        orchestrator=orchestrator,
        resources=[source, extractor, summarizer, *channels],
    )
