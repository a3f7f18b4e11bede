"""Single-instance mutual exclusion between overlapping relayer runs."""

from __future__ import annotations

import abc
import os
import time
import uuid
from pathlib import Path
from typing import Callable, Optional, Union

from relayer.core.utils import get_logger

LOGGER = get_logger("relayer.lease")

DEFAULT_LOCK_PATH = "./data/relayer.lock"
DEFAULT_STALE_AFTER = 5 * 60.0


class ExclusiveLease(abc.ABC):
    """A lease held for the duration of one relayer run."""

    @abc.abstractmethod
    def acquire(self) -> bool:
        """Take the lease; False when another live holder has it."""

    @abc.abstractmethod
    def release(self) -> None:
        """Give the lease up. Must not raise."""

    def __enter__(self) -> bool:
        return self.acquire()

    def __exit__(self, *exc_info) -> None:
        self.release()


class FileLease(ExclusiveLease):
    """Lease backed by a marker file holding the acquisition time in millis.

    The marker reads ``<millis>\\n<pid>\\n<token>\\n``; the token identifies the
    holder so a run only ever removes its own marker. A marker older than
    ``stale_after`` seconds (or one that cannot be parsed) is treated as left
    behind by a crashed run. Takeover first renames the exact stale marker
    aside, so of several runs racing for it only one can win.
    """

    def __init__(
        self,
        path: Union[str, Path] = DEFAULT_LOCK_PATH,
        *,
        stale_after: float = DEFAULT_STALE_AFTER,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = Path(path)
        self.stale_after = stale_after
        self._clock = clock
        self._marker: Optional[str] = None

    @property
    def held(self) -> bool:
        return self._marker is not None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _read_marker(self) -> Optional[str]:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _marker_age(self, content: str) -> float:
        try:
            return (self._now_ms() - int(content.split()[0])) / 1000
        except (IndexError, ValueError):
            LOGGER.warning("Unreadable lease marker at %s, treating as stale", self.path)
            return float("inf")

    def _create_marker(self) -> bool:
        content = f"{self._now_ms()}\n{os.getpid()}\n{uuid.uuid4().hex}\n"
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        self._marker = content
        return True

    def _claim_stale(self, observed: str) -> bool:
        """Move the ``observed`` stale marker out of the way.

        False when the file at ``path`` is no longer that marker, i.e. another
        run replaced it first; a live marker moved aside by mistake is put back.
        """
        claim = self.path.with_name(f"{self.path.name}.{uuid.uuid4().hex}.claim")
        try:
            os.rename(self.path, claim)
        except FileNotFoundError:
            return True
        try:
            if claim.read_text(encoding="utf-8") == observed:
                return True
            try:
                os.link(claim, self.path)
            except OSError as exc:
                LOGGER.warning("Lease %s changed hands during takeover: %s", self.path, exc)
            return False
        finally:
            claim.unlink()

    def acquire(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if self._create_marker():
            return True

        observed = self._read_marker()
        if observed is not None:
            age = self._marker_age(observed)
            if age < self.stale_after:
                LOGGER.info("Lease %s held by another run (age %.1fs)", self.path, age)
                return False
            LOGGER.warning("Replacing stale lease %s (age %.1fs)", self.path, age)
            if not self._claim_stale(observed):
                LOGGER.info("Lease %s taken by a concurrent run", self.path)
                return False

        if not self._create_marker():
            LOGGER.info("Lease %s taken by a concurrent run", self.path)
            return False
        return True

    def release(self) -> None:
        if self._marker is None:
            return
        mine, self._marker = self._marker, None
        try:
            current = self._read_marker()
            if current is None:
                LOGGER.warning("Lease %s already removed", self.path)
            elif current != mine:
                LOGGER.warning("Lease %s was taken over by another run, leaving its marker", self.path)
            else:
                self.path.unlink()
        except OSError as exc:
            LOGGER.warning("Failed to release lease %s: %s", self.path, exc)


__all__ = ["DEFAULT_LOCK_PATH", "DEFAULT_STALE_AFTER", "ExclusiveLease", "FileLease"]
