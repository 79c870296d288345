"""At-most-one background process per job name.

Ownership is recorded as ``<root>/<name>.pid``. A record whose process is no
longer alive is stale and is replaced by the next spawn; the check is
advisory, so two racing invocations may very rarely both spawn.
"""

from __future__ import annotations

import errno
import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Callable, Optional, Sequence

from .errors import JobExistsError

logger = logging.getLogger(__name__)

# a claimed record that has no pid yet belongs to a spawn in progress
CLAIM_GRACE_SECONDS = 10.0


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    _reap(pid)
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by someone else
        return True
    return True


def _reap(pid: int) -> None:
    # collect our own exited children so they stop showing up as zombies
    try:
        os.waitpid(pid, os.WNOHANG)
    except ChildProcessError:
        pass


class JobCoordinator:
    def __init__(self, root: Path, clock: Callable[[], float] = time.time) -> None:
        self.root = Path(root)
        self.clock = clock

    def pid_file(self, name: str) -> Path:
        return self.root / f"{name}.pid"

    def log_file(self, name: str) -> Path:
        return self.root / f"{name}.log"

    def owner(self, name: str) -> Optional[int]:
        """PID of the live process owning ``name``, else None."""
        path = self.pid_file(name)
        try:
            raw = path.read_text().strip()
        except FileNotFoundError:
            return None
        if not raw:
            return None
        try:
            pid = int(raw)
        except ValueError:
            return None
        return pid if pid_alive(pid) else None

    def is_running(self, name: str) -> bool:
        if self.owner(name) is not None:
            return True
        return self._claim_pending(name)

    def run_in_background(self, name: str, command: Sequence[str]) -> int:
        """Start ``command`` detached and record it as owner of ``name``.

        Raises JobExistsError if a live process already owns the name.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.pid_file(name)
        fd = self._claim(name)
        try:
            with open(self.log_file(name), "ab") as log:
                process = subprocess.Popen(
                    list(command),
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                    close_fds=True,
                )
        except OSError:
            os.close(fd)
            path.unlink(missing_ok=True)
            raise

        with os.fdopen(fd, "w") as handle:
            handle.write(str(process.pid))
        logger.info("[jobs] started %r (pid=%d): %s", name, process.pid, " ".join(command))
        return process.pid

    def _claim(self, name: str) -> int:
        path = self.pid_file(name)
        for _ in range(2):
            try:
                return os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
            except OSError as exc:
                if exc.errno != errno.EEXIST:
                    raise
            pid = self.owner(name)
            if pid is not None or self._claim_pending(name):
                raise JobExistsError(name, pid)
            logger.info("[jobs] removing stale record for %r", name)
            path.unlink(missing_ok=True)
        raise JobExistsError(name)

    def _claim_pending(self, name: str) -> bool:
        path = self.pid_file(name)
        try:
            stat = path.stat()
            raw = path.read_text().strip()
        except FileNotFoundError:
            return False
        return not raw and self.clock() - stat.st_mtime < CLAIM_GRACE_SECONDS
