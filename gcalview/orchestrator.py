"""Stale-while-revalidate reads.

``get_or_refresh`` never waits for data: it returns whatever the cache
holds (possibly stale, possibly nothing) and, when the entry is expired or
unreadable, hands the refresh to a detached background job.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Callable, Optional, Sequence

from .cache import CacheStore
from .errors import CacheError, JobExistsError
from .jobs import JobCoordinator
from .models import RefreshResult

logger = logging.getLogger(__name__)


class RefreshOrchestrator:
    def __init__(self, store: CacheStore, jobs: JobCoordinator) -> None:
        self.store = store
        self.jobs = jobs

    def get_or_refresh(
        self,
        key: str,
        max_age: timedelta | float,
        job_name: str,
        command: Sequence[str],
        decode: Optional[Callable[[Any], Any]] = None,
    ) -> RefreshResult:
        result = RefreshResult(value=None)
        unreadable = False

        if self.store.exists(key):
            try:
                raw = self.store.load_json(key)
                result.value = decode(raw) if decode is not None else raw
            except (CacheError, ValueError, TypeError, KeyError) as exc:
                logger.error("[cache] unreadable entry %r: %s", key, exc)
                result.error = exc
                unreadable = True

        if unreadable or self.store.expired(key, max_age):
            result.still_refreshing = True
            try:
                self.jobs.run_in_background(job_name, command)
            except JobExistsError:
                logger.debug("[cache] %r is already being refreshed by %r", key, job_name)
            except OSError as exc:
                logger.error("[cache] could not start %r: %s", job_name, exc)
                result.error = exc
                result.still_refreshing = False
        elif self.jobs.is_running(job_name):
            result.still_refreshing = True

        return result
