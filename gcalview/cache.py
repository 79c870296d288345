"""On-disk cache of JSON-serializable blobs keyed by name."""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import time
from datetime import timedelta
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Iterable, List, Optional

from .errors import CacheError

logger = logging.getLogger(__name__)


class CacheStore:
    """Whole-value store of blobs under ``root``.

    Writes go through a temporary file and ``os.replace`` so readers in other
    processes only ever see complete values; the last writer wins.
    """

    def __init__(self, root: Path, clock: Callable[[], float] = time.time) -> None:
        self.root = Path(root)
        self.clock = clock
        self._lock = Lock()

    def path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise CacheError(f"invalid cache key: {key!r}")
        return self.root / key

    def exists(self, key: str) -> bool:
        return self.path(key).is_file()

    def age(self, key: str) -> Optional[float]:
        try:
            mtime = self.path(key).stat().st_mtime
        except FileNotFoundError:
            return None
        return self.clock() - mtime

    def expired(self, key: str, max_age: timedelta | float) -> bool:
        age = self.age(key)
        if age is None:
            return True
        limit = max_age.total_seconds() if isinstance(max_age, timedelta) else float(max_age)
        return age >= limit

    def load(self, key: str) -> bytes:
        try:
            return self.path(key).read_bytes()
        except OSError as exc:
            raise CacheError(f"read cache {key!r}: {exc}") from exc

    def store(self, key: str, data: bytes) -> None:
        target = self.path(key)
        with self._lock:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", dir=target.parent)
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                os.replace(tmp_name, target)
            except OSError as exc:
                Path(tmp_name).unlink(missing_ok=True)
                raise CacheError(f"write cache {key!r}: {exc}") from exc
        logger.debug("[cache] stored %s (%d bytes)", key, len(data))

    def load_json(self, key: str) -> Any:
        raw = self.load(key)
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CacheError(f"decode cache {key!r}: {exc}") from exc

    def store_json(self, key: str, value: Any) -> None:
        self.store(key, json.dumps(value, indent=2).encode("utf-8"))

    def remove(self, key: str) -> bool:
        try:
            self.path(key).unlink()
        except FileNotFoundError:
            return False
        logger.info("[cache] deleted %s", key)
        return True

    def keys(self, prefix: str = "", suffix: str = "") -> List[str]:
        if not self.root.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.root.iterdir()
            if entry.is_file()
            and not entry.name.startswith(".")
            and entry.name.startswith(prefix)
            and entry.name.endswith(suffix)
        )

    def clear_old_files(
        self,
        max_age: timedelta,
        patterns: Iterable[Callable[[Path], bool]],
        skip_dirs: Iterable[str] = (),
    ) -> int:
        """Delete files matching any of ``patterns`` older than ``max_age``, then empty dirs."""
        if not self.root.is_dir():
            return 0
        cutoff = self.clock() - max_age.total_seconds()
        matchers = list(patterns)
        skipped = set(skip_dirs)
        removed = 0
        dirs: List[Path] = []

        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = [name for name in dirnames if name not in skipped]
            current = Path(dirpath)
            if current != self.root:
                dirs.append(current)
            for filename in filenames:
                path = current / filename
                if path.stat().st_mtime > cutoff:
                    continue
                if any(match(path) for match in matchers):
                    path.unlink()
                    removed += 1
                    logger.debug("[cache] deleted old file %s", path)

        # children before their parents
        for directory in sorted(dirs, reverse=True):
            if any(not entry.name.startswith(".") for entry in directory.iterdir()):
                continue
            shutil.rmtree(directory)
            logger.info("[cache] deleted empty dir %s", directory)

        return removed
