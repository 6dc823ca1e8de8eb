"""Filesystem blob storage for extracted text, summaries and rendered digests.

Each blob lives at ``<root>/<kind>/<owner>/<digest>.<ext>`` where ``digest``
is a short SHA-256 of the payload. Refs are therefore content addressed:
writing the same payload twice yields the same ref and never rewrites the
file, and a stored blob is never modified.
"""

from __future__ import annotations

import hashlib
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any

from ..core.errors import BlobNotFound, StoreUnavailable

CONTENT = "content"
SUMMARY = "summary"
DIGEST = "digest"

_SAFE_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _safe(part: str) -> str:
    cleaned = _SAFE_RE.sub("-", part).strip("-.")
    return cleaned or "blob"


class BlobStore:
    """Immutable, content-addressed blobs under a root directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def put_text(self, kind: str, owner: str, text: str, ext: str = "txt") -> str:
        return self._put(kind, owner, text.encode("utf-8"), ext)

    def put_json(self, kind: str, owner: str, payload: dict[str, Any]) -> str:
        data = json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)
        return self._put(kind, owner, data.encode("utf-8"), "json")

    def get_text(self, ref: str) -> str:
        path = self._path(ref)
        if not path.is_file():
            raise BlobNotFound(ref)
        return path.read_text(encoding="utf-8")

    def get_json(self, ref: str) -> dict[str, Any]:
        return json.loads(self.get_text(ref))

    def exists(self, ref: str) -> bool:
        return self._path(ref).is_file()

    def _put(self, kind: str, owner: str, data: bytes, ext: str) -> str:
        digest = hashlib.sha256(data).hexdigest()[:16]
        ref = f"{_safe(kind)}/{_safe(owner)}/{digest}.{_safe(ext)}"
        path = self._path(ref)
        try:
            if path.exists():
                return ref
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write to a sibling temp file and rename so readers never see a partial blob.
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StoreUnavailable(f"Cannot write blob {ref}: {exc}") from exc
        return ref

    def _path(self, ref: str) -> Path:
        parts = ref.split("/")
        if len(parts) != 3 or any(not p or p in {".", ".."} for p in parts):
            raise BlobNotFound(ref)
        return self.root.joinpath(*parts)
