"""Durable item and digest state backed by SQLite.

The store is the only shared mutable resource of the pipeline. Every state
change is a compare-and-swap: an ``UPDATE`` guarded by the state the caller
expects. When the guard does not match, the write is dropped and the caller
learns it lost the race (``TransitionResult.CONFLICT``). Overlapping ticks
rely on this instead of in-process locks.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
import hashlib
import json
import logging
from pathlib import Path
import sqlite3
from typing import Callable, Iterable, Iterator

from ..core.errors import InvalidTransition, StoreUnavailable
from ..core.types import (
    ChannelDelivery,
    DeliveryStatus,
    DiscoveredItem,
    Digest,
    DigestStatus,
    Item,
    Stage,
    TransitionResult,
    UpsertResult,
    Work,
    is_allowed_transition,
)

logger = logging.getLogger("hn_digest.store")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
  id TEXT PRIMARY KEY,
  title TEXT NOT NULL,
  url TEXT,
  rank INTEGER NOT NULL DEFAULT 0,
  score INTEGER NOT NULL DEFAULT 0,
  author TEXT,
  stage TEXT NOT NULL,
  extraction_attempts INTEGER NOT NULL DEFAULT 0,
  summarization_attempts INTEGER NOT NULL DEFAULT 0,
  notification_attempts INTEGER NOT NULL DEFAULT 0,
  content_ref TEXT,
  summary_ref TEXT,
  digest_id TEXT,
  last_error TEXT,
  discovered_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_items_stage_updated ON items(stage, updated_at);
CREATE INDEX IF NOT EXISTS idx_items_digest ON items(digest_id);

CREATE TABLE IF NOT EXISTS digests (
  id TEXT PRIMARY KEY,
  item_ids TEXT NOT NULL,
  grouping TEXT NOT NULL,
  format TEXT NOT NULL,
  status TEXT NOT NULL,
  body_ref TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_digests_status ON digests(status, created_at);

CREATE TABLE IF NOT EXISTS digest_deliveries (
  digest_id TEXT NOT NULL,
  channel TEXT NOT NULL,
  status TEXT NOT NULL,
  attempts INTEGER NOT NULL DEFAULT 0,
  last_error TEXT,
  delivered_at TEXT,
  lease_until TEXT,
  PRIMARY KEY (digest_id, channel),
  FOREIGN KEY (digest_id) REFERENCES digests(id)
);
"""

_ATTEMPT_COLUMNS = {
    Work.EXTRACTION: "extraction_attempts",
    Work.SUMMARIZATION: "summarization_attempts",
    Work.NOTIFICATION: "notification_attempts",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: datetime) -> str:
    # Fixed-width UTC timestamps so lexical order matches time order.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def make_digest_id(item_ids: Iterable[str], created_at: datetime) -> str:
    """Deterministic digest id from its members; doubles as the channel dedup key."""
    joined = ",".join(sorted(item_ids))
    digest = hashlib.sha1(joined.encode("utf-8")).hexdigest()[:10]
    return f"{created_at:%Y%m%d}-{digest}"


class ItemStore:
    """SQLite item/digest store with compare-and-swap state transitions.

    Args:
        path: Database file, or ":memory:"
        max_retry_attempts: Items with this many failed attempts are not eligible
        clock: Source of "now"; injectable for deterministic ordering in tests
    """

    def __init__(
        self,
        path: Path | str,
        max_retry_attempts: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.path = str(path)
        self.max_retry_attempts = max_retry_attempts
        self.clock = clock
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path, timeout=30.0, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA busy_timeout = 30000")
            if self.path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.executescript(_SCHEMA)
        except (sqlite3.Error, OSError) as exc:
            raise StoreUnavailable(f"Cannot open item store {self.path}: {exc}") from exc

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "ItemStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @contextmanager
    def _guard(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Item store error: {exc}") from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._guard() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    # -- items -------------------------------------------------------------

    def upsert_discovered(self, discovered: DiscoveredItem) -> UpsertResult:
        """Create an item in DISCOVERED; re-discovery of a known id is a no-op."""
        now = _ts(self.clock())
        with self._guard() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO items
                  (id, title, url, rank, score, author, stage, discovered_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    discovered.external_id,
                    discovered.title,
                    discovered.url,
                    discovered.rank,
                    discovered.score,
                    discovered.author,
                    Stage.DISCOVERED.value,
                    now,
                    now,
                ),
            )
        return UpsertResult(id=discovered.external_id, created=cur.rowcount == 1)

    def get(self, item_id: str) -> Item | None:
        with self._guard() as conn:
            row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
        return _row_to_item(row) if row else None

    def list_eligible(
        self, stage: Stage, limit: int, updated_before: datetime | None = None
    ) -> list[Item]:
        """Items waiting in ``stage`` with retry budget left, oldest-updated first.

        Args:
            stage: Stage the items must currently be in
            limit: Maximum number of items returned
            updated_before: Only items last updated strictly before this time;
                used to keep items that moved this tick out of later stages
        """
        column = _ATTEMPT_COLUMNS[Work.for_stage(stage)]
        cutoff = _ts(updated_before) if updated_before is not None else None
        with self._guard() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM items
                WHERE stage = ? AND {column} < ?
                  AND (? IS NULL OR updated_at < ?)
                ORDER BY updated_at ASC, rowid ASC
                LIMIT ?
                """,
                (stage.value, self.max_retry_attempts, cutoff, cutoff, limit),
            ).fetchall()
        return [_row_to_item(row) for row in rows]

    def transition(
        self,
        item_id: str,
        from_stage: Stage,
        to_stage: Stage,
        content_ref: str | None = None,
        summary_ref: str | None = None,
        error: str | None = None,
        add_attempts: int = 0,
    ) -> TransitionResult:
        """Compare-and-swap the stage of one item.

        ``add_attempts`` failed attempts made before the outcome that caused
        this move are added to the attempt counter of the work leaving
        ``from_stage`` in the same guarded write.

        Raises:
            InvalidTransition: If ``to_stage`` is not a single forward step
                or the failed variant of ``from_stage``
        """
        if not is_allowed_transition(from_stage, to_stage):
            raise InvalidTransition(f"{from_stage.value} -> {to_stage.value}")
        column = _ATTEMPT_COLUMNS[Work.for_stage(from_stage)]
        with self._guard() as conn:
            cur = conn.execute(
                f"""
                UPDATE items
                SET stage = ?,
                    content_ref = COALESCE(?, content_ref),
                    summary_ref = COALESCE(?, summary_ref),
                    last_error = COALESCE(?, last_error),
                    {column} = {column} + ?,
                    updated_at = ?
                WHERE id = ? AND stage = ?
                """,
                (
                    to_stage.value,
                    content_ref,
                    summary_ref,
                    error,
                    add_attempts,
                    _ts(self.clock()),
                    item_id,
                    from_stage.value,
                ),
            )
        if cur.rowcount == 1:
            return TransitionResult.SUCCESS
        return TransitionResult.CONFLICT

    def record_failure(self, item_id: str, stage: Stage, error: str, count: int = 1) -> int | None:
        """Add ``count`` failed attempts for the work leaving ``stage``.

        Returns:
            The new attempt count, or None if the item is no longer in ``stage``
        """
        column = _ATTEMPT_COLUMNS[Work.for_stage(stage)]
        with self._transaction() as conn:
            cur = conn.execute(
                f"""
                UPDATE items
                SET {column} = {column} + ?, last_error = ?, updated_at = ?
                WHERE id = ? AND stage = ?
                """,
                (count, error, _ts(self.clock()), item_id, stage.value),
            )
            if cur.rowcount != 1:
                return None
            row = conn.execute(f"SELECT {column} FROM items WHERE id = ?", (item_id,)).fetchone()
        return int(row[0])

    def count_by_stage(self) -> dict[Stage, int]:
        with self._guard() as conn:
            rows = conn.execute("SELECT stage, COUNT(*) FROM items GROUP BY stage").fetchall()
        counts = {stage: 0 for stage in Stage}
        for stage, count in rows:
            counts[Stage(stage)] = count
        return counts

    def list_items(self, stage: Stage | None = None, limit: int = 100) -> list[Item]:
        with self._guard() as conn:
            if stage is None:
                rows = conn.execute(
                    "SELECT * FROM items ORDER BY updated_at DESC, rowid DESC LIMIT ?", (limit,)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM items WHERE stage = ? ORDER BY updated_at DESC, rowid DESC LIMIT ?",
                    (stage.value, limit),
                ).fetchall()
        return [_row_to_item(row) for row in rows]

    def count_unattached_summarized(self) -> int:
        with self._guard() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM items WHERE stage = ? AND digest_id IS NULL",
                (Stage.SUMMARIZED.value,),
            ).fetchone()
        return int(row[0])

    # -- digests -----------------------------------------------------------

    def claim_digest(
        self,
        min_items: int,
        max_items: int,
        grouping: str,
        fmt: str,
        channels: list[str],
    ) -> Digest | None:
        """Atomically create a digest from the oldest unattached summarized items.

        Returns None (and changes nothing) when fewer than ``min_items`` are waiting.
        """
        now = self.clock()
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT id FROM items
                WHERE stage = ? AND digest_id IS NULL
                ORDER BY updated_at ASC, rowid ASC
                LIMIT ?
                """,
                (Stage.SUMMARIZED.value, max_items),
            ).fetchall()
            item_ids = [row[0] for row in rows]
            if len(item_ids) < min_items:
                return None
            digest_id = make_digest_id(item_ids, now)
            conn.execute(
                """
                INSERT INTO digests (id, item_ids, grouping, format, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    digest_id,
                    json.dumps(item_ids),
                    grouping,
                    fmt,
                    DigestStatus.PENDING.value,
                    _ts(now),
                    _ts(now),
                ),
            )
            conn.executemany(
                "INSERT INTO digest_deliveries (digest_id, channel, status) VALUES (?, ?, ?)",
                [(digest_id, channel, DeliveryStatus.PENDING.value) for channel in channels],
            )
            conn.executemany(
                "UPDATE items SET digest_id = ? WHERE id = ? AND digest_id IS NULL",
                [(digest_id, item_id) for item_id in item_ids],
            )
        return self.get_digest(digest_id)

    def get_digest(self, digest_id: str) -> Digest | None:
        with self._guard() as conn:
            row = conn.execute("SELECT * FROM digests WHERE id = ?", (digest_id,)).fetchone()
            if row is None:
                return None
            deliveries = conn.execute(
                "SELECT * FROM digest_deliveries WHERE digest_id = ? ORDER BY channel",
                (digest_id,),
            ).fetchall()
        return _row_to_digest(row, deliveries)

    def list_open_digests(self, limit: int) -> list[Digest]:
        """Digests with pending channels, or whose items have not been moved on yet."""
        with self._guard() as conn:
            rows = conn.execute(
                """
                SELECT id FROM digests d
                WHERE d.status = ?
                   OR EXISTS (
                     SELECT 1 FROM digest_deliveries x
                     WHERE x.digest_id = d.id AND x.status = ?
                   )
                   OR EXISTS (
                     SELECT 1 FROM items i
                     WHERE i.digest_id = d.id AND i.stage = ?
                   )
                ORDER BY d.created_at ASC
                LIMIT ?
                """,
                (
                    DigestStatus.PENDING.value,
                    DeliveryStatus.PENDING.value,
                    Stage.SUMMARIZED.value,
                    limit,
                ),
            ).fetchall()
        digests = [self.get_digest(row[0]) for row in rows]
        return [d for d in digests if d is not None]

    def list_digests(self, limit: int = 20) -> list[Digest]:
        with self._guard() as conn:
            rows = conn.execute(
                "SELECT id FROM digests ORDER BY created_at DESC LIMIT ?", (limit,)
            ).fetchall()
        digests = [self.get_digest(row[0]) for row in rows]
        return [d for d in digests if d is not None]

    def set_digest_body(self, digest_id: str, body_ref: str) -> TransitionResult:
        """Attach the rendered body once; a digest body is never replaced."""
        with self._guard() as conn:
            cur = conn.execute(
                "UPDATE digests SET body_ref = ?, updated_at = ? WHERE id = ? AND body_ref IS NULL",
                (body_ref, _ts(self.clock()), digest_id),
            )
        if cur.rowcount == 1:
            return TransitionResult.SUCCESS
        return TransitionResult.CONFLICT

    def lease_delivery(self, digest_id: str, channel: str, lease_seconds: float) -> bool:
        """Claim a pending delivery for ``lease_seconds``; False if another tick holds it.

        The lease is released when the delivery is marked delivered or a
        failure is recorded. A tick that dies mid-send leaves the lease to expire.
        """
        now = self.clock()
        with self._guard() as conn:
            cur = conn.execute(
                """
                UPDATE digest_deliveries
                SET lease_until = ?
                WHERE digest_id = ? AND channel = ? AND status = ?
                  AND (lease_until IS NULL OR lease_until <= ?)
                """,
                (
                    _ts(now + timedelta(seconds=lease_seconds)),
                    digest_id,
                    channel,
                    DeliveryStatus.PENDING.value,
                    _ts(now),
                ),
            )
        return cur.rowcount == 1

    def mark_delivered(self, digest_id: str, channel: str) -> TransitionResult:
        with self._guard() as conn:
            cur = conn.execute(
                """
                UPDATE digest_deliveries
                SET status = ?, delivered_at = ?, last_error = NULL, lease_until = NULL
                WHERE digest_id = ? AND channel = ? AND status = ?
                """,
                (
                    DeliveryStatus.DELIVERED.value,
                    _ts(self.clock()),
                    digest_id,
                    channel,
                    DeliveryStatus.PENDING.value,
                ),
            )
        if cur.rowcount == 1:
            return TransitionResult.SUCCESS
        return TransitionResult.CONFLICT

    def record_delivery_failure(
        self,
        digest_id: str,
        channel: str,
        error: str,
        count: int = 1,
        permanent: bool = False,
    ) -> DeliveryStatus | None:
        """Count failed delivery attempts; the channel fails once the budget is spent.

        Returns:
            The resulting delivery status, or None if the channel was no longer pending
        """
        with self._transaction() as conn:
            cur = conn.execute(
                """
                UPDATE digest_deliveries
                SET attempts = attempts + ?, last_error = ?, lease_until = NULL
                WHERE digest_id = ? AND channel = ? AND status = ?
                """,
                (count, error, digest_id, channel, DeliveryStatus.PENDING.value),
            )
            if cur.rowcount != 1:
                return None
            row = conn.execute(
                "SELECT attempts FROM digest_deliveries WHERE digest_id = ? AND channel = ?",
                (digest_id, channel),
            ).fetchone()
            if permanent or int(row[0]) >= self.max_retry_attempts:
                conn.execute(
                    "UPDATE digest_deliveries SET status = ? WHERE digest_id = ? AND channel = ?",
                    (DeliveryStatus.FAILED.value, digest_id, channel),
                )
                return DeliveryStatus.FAILED
        return DeliveryStatus.PENDING

    def set_digest_status(self, digest_id: str, status: DigestStatus) -> None:
        with self._guard() as conn:
            conn.execute(
                "UPDATE digests SET status = ?, updated_at = ? WHERE id = ?",
                (status.value, _ts(self.clock()), digest_id),
            )

    def count_digests_by_status(self) -> dict[DigestStatus, int]:
        with self._guard() as conn:
            rows = conn.execute("SELECT status, COUNT(*) FROM digests GROUP BY status").fetchall()
        counts = {status: 0 for status in DigestStatus}
        for status, count in rows:
            counts[DigestStatus(status)] = count
        return counts


def _row_to_item(row: sqlite3.Row) -> Item:
    return Item(
        id=row["id"],
        title=row["title"],
        url=row["url"],
        rank=row["rank"],
        score=row["score"],
        author=row["author"],
        stage=Stage(row["stage"]),
        attempts={work: int(row[column]) for work, column in _ATTEMPT_COLUMNS.items()},
        content_ref=row["content_ref"],
        summary_ref=row["summary_ref"],
        digest_id=row["digest_id"],
        last_error=row["last_error"],
        discovered_at=_parse_ts(row["discovered_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _row_to_digest(row: sqlite3.Row, deliveries: list[sqlite3.Row]) -> Digest:
    return Digest(
        id=row["id"],
        item_ids=json.loads(row["item_ids"]),
        grouping=row["grouping"],
        format=row["format"],
        status=DigestStatus(row["status"]),
        body_ref=row["body_ref"],
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
        deliveries={
            d["channel"]: ChannelDelivery(
                channel=d["channel"],
                status=DeliveryStatus(d["status"]),
                attempts=d["attempts"],
                last_error=d["last_error"],
                delivered_at=_parse_ts(d["delivered_at"]),
            )
            for d in deliveries
        },
    )
