"""Local file channel: one file per digest, named after the digest id."""

from __future__ import annotations

import os
from pathlib import Path
import tempfile

from ..core.errors import DeliveryError, describe_error
from ..core.types import Digest
from .base import FORMAT_EXTENSIONS, NotificationChannel


class FileChannel(NotificationChannel):
    name = "file"

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def path_for(self, digest: Digest) -> Path:
        ext = FORMAT_EXTENSIONS.get(digest.format, "txt")
        return self.directory / f"{digest.id}.{ext}"

    async def deliver(self, digest: Digest, body: str) -> None:
        path = self.path_for(digest)
        try:
            if path.is_file() and path.read_text(encoding="utf-8") == body:
                return
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(body)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise DeliveryError(f"file delivery failed: {describe_error(exc)}") from exc
