"""Durable pipeline state: the SQLite item store and the filesystem blob store."""

from .blob_store import BlobStore
from .item_store import ItemStore, make_digest_id

__all__ = ["BlobStore", "ItemStore", "make_digest_id"]
